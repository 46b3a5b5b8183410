#!/usr/bin/env python3
"""
AnkiConnect client for digest-anki.

Provides programmatic access to Anki via the AnkiConnect plugin.
AnkiConnect must be installed and Anki must be running for this to work.

Installation:
1. Install AnkiConnect plugin in Anki (code: 2055492159)
2. Restart Anki
3. Ensure Anki is running when using these functions

Documentation: https://foosoft.net/projects/anki-connect/
"""

import json
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional


class AnkiConnectError(Exception):
    """Raised when AnkiConnect API returns an error."""
    pass


class AnkiConnectClient:
    """Client for interacting with Anki via AnkiConnect plugin."""

    def __init__(
        self,
        url: str = "http://localhost:8765",
        key: Optional[str] = None,
        timeout: float = 10,
    ):
        """
        Initialize AnkiConnect client.

        Args:
            url: AnkiConnect API endpoint (default: http://localhost:8765)
            key: Optional API key (AnkiConnect "apiKey" setting)
            timeout: Per-request timeout in seconds
        """
        self.url = url
        self.key = key
        self.timeout = timeout
        self.version = 6

    def _invoke(self, action: str, **params) -> Any:
        """
        Invoke an AnkiConnect API action.

        Args:
            action: API action name
            **params: Parameters for the action

        Returns:
            API response result

        Raises:
            AnkiConnectError: If the API returns an error
            ConnectionError: If cannot connect to Anki
        """
        request_data: Dict[str, Any] = {
            'action': action,
            'version': self.version,
            'params': params
        }
        if self.key:
            request_data['key'] = self.key

        request = urllib.request.Request(
            self.url,
            data=json.dumps(request_data).encode('utf-8'),
            headers={'Content-Type': 'application/json'}
        )

        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                response_data = json.loads(response.read().decode('utf-8'))

        except ValueError as e:
            # Body that is not UTF-8 JSON
            raise AnkiConnectError(f"Invalid response from AnkiConnect for {action}: {e}")
        except OSError as e:
            # URLError, and the bare TimeoutError raised when a reply is too slow
            raise ConnectionError(
                f"Could not connect to Anki. "
                f"Make sure Anki is running and AnkiConnect is installed. "
                f"Error: {e}"
            )

        if not isinstance(response_data, dict) or set(response_data) != {'result', 'error'}:
            raise AnkiConnectError(f'Invalid response format: {response_data}')

        if response_data['error'] is not None:
            raise AnkiConnectError(response_data['error'])

        return response_data['result']

    def check_connection(self) -> bool:
        """
        Check if AnkiConnect is available.

        Returns:
            True if connected, False otherwise
        """
        try:
            self._invoke('version')
            return True
        except (AnkiConnectError, ConnectionError):
            return False

    def get_version(self) -> int:
        """Get AnkiConnect version."""
        return self._invoke('version')

    def sync(self) -> None:
        """Ask Anki to sync the collection with AnkiWeb."""
        self._invoke('sync')

    # ========================================================================
    # Deck Operations
    # ========================================================================

    def get_deck_names(self) -> List[str]:
        """Get list of all deck names."""
        return self._invoke('deckNames')

    def create_deck(self, deck: str) -> int:
        """
        Create a deck, or return the existing deck's ID.

        Args:
            deck: Deck name (can use :: for nested, e.g. "Parent::Child")

        Returns:
            Deck ID
        """
        return self._invoke('createDeck', deck=deck)

    # ========================================================================
    # Note Operations
    # ========================================================================

    def add_note(self, note: Dict[str, Any]) -> Optional[int]:
        """
        Add a note in AnkiConnect format.

        Args:
            note: Dict with deckName, modelName, fields, tags and options

        Returns:
            Note ID if successful, None if rejected as a duplicate

        Raises:
            AnkiConnectError: If the operation fails for another reason
        """
        try:
            return self._invoke('addNote', note=note)
        except AnkiConnectError as e:
            if 'duplicate' in str(e).lower():
                return None
            raise

    def find_notes(self, query: str) -> List[int]:
        """
        Find notes matching a query.

        Args:
            query: Anki search query (e.g., 'deck:"MyDeck" Word:"swoon"')

        Returns:
            List of note IDs
        """
        return self._invoke('findNotes', query=query)

    def get_notes_info(self, note_ids: List[int]) -> List[Dict]:
        """
        Get information about notes.

        Returns:
            List of dicts with noteId, modelName, tags, fields ({name: {value, order}}) and mod
        """
        return self._invoke('notesInfo', notes=note_ids)

    def update_note_fields(self, note_id: int, fields: Dict[str, str]) -> None:
        """Overwrite only the given fields of an existing note."""
        self._invoke('updateNoteFields', note={'id': note_id, 'fields': fields})

    def update_note_tags(self, note_id: int, tags: List[str]) -> None:
        """Replace the tag list of an existing note."""
        self._invoke('updateNoteTags', note=note_id, tags=tags)

    # ========================================================================
    # Model (Note Type) Operations
    # ========================================================================

    def get_model_names(self) -> List[str]:
        """Get list of all note type names."""
        return self._invoke('modelNames')

    def get_model_field_names(self, model: str) -> List[str]:
        """
        Get field names for a note type.

        Args:
            model: Note type name

        Returns:
            List of field names
        """
        return self._invoke('modelFieldNames', modelName=model)


__all__ = ["AnkiConnectClient", "AnkiConnectError"]

"""
relaychat - Contact names.

Contacts are a flat ``{phone: display name}`` map kept in ``contacts.json``.
Phones are stored normalized so lookups match the ``from`` field of
delivered messages.
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import aiofiles

from .identity import normalize_phone

logger = logging.getLogger(__name__)


class ContactBook:
    """Manages contact names and their persistent storage."""

    def __init__(self, contacts_file: Union[str, Path]):
        self.contacts_file = str(contacts_file)
        self.contacts: Dict[str, str] = {}  # phone -> name
        self.load_contacts()

    def load_contacts(self) -> Dict[str, str]:
        """(Re)load contacts from file. A corrupted file yields an empty book."""
        self.contacts = {}
        if not os.path.exists(self.contacts_file):
            return self.contacts

        try:
            with open(self.contacts_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("contacts file is not a JSON object")
            self.contacts = {
                phone: name
                for phone, name in data.items()
                if isinstance(phone, str) and isinstance(name, str)
            }
            logger.info(f"Loaded {len(self.contacts)} contacts from {self.contacts_file}")
        except OSError as e:
            logger.error(f"Failed to read contacts file: {e}")
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Corrupted contacts file: {e}")
            logger.warning("Starting with empty contacts due to corrupted file")

        return self.contacts

    def _serialize(self) -> str:
        return json.dumps(self.contacts, indent=2, ensure_ascii=False)

    def save_contacts(self) -> bool:
        """Save contacts to file. Returns False (logged) on failure."""
        temp_file = f"{self.contacts_file}.tmp"
        try:
            Path(self.contacts_file).parent.mkdir(parents=True, exist_ok=True)

            # Write to temporary file first for atomicity
            with open(temp_file, "w", encoding="utf-8") as f:
                f.write(self._serialize())

            # Atomic rename
            os.replace(temp_file, self.contacts_file)
            logger.debug(f"Saved {len(self.contacts)} contacts to {self.contacts_file}")
            return True

        except OSError as e:
            logger.error(f"Failed to save contacts: {e}")
            return False

    async def save_contacts_async(self) -> bool:
        """Save contacts to file asynchronously."""
        temp_file = f"{self.contacts_file}.tmp"
        try:
            Path(self.contacts_file).parent.mkdir(parents=True, exist_ok=True)

            async with aiofiles.open(temp_file, "w", encoding="utf-8") as f:
                await f.write(self._serialize())

            os.replace(temp_file, self.contacts_file)
            logger.debug(f"Saved {len(self.contacts)} contacts to {self.contacts_file}")
            return True

        except OSError as e:
            logger.error(f"Failed to save contacts: {e}")
            return False

    def save_contact_name(self, phone: str, name: str) -> bool:
        """
        Set the display name for a phone.

        The name is trimmed; an empty name removes the contact instead.

        Raises:
            ValueError: If the phone cannot be normalized
        """
        phone = normalize_phone(phone)
        name = name.strip()
        if not name:
            return self.remove_contact(phone)

        self.contacts[phone] = name
        return self.save_contacts()

    def remove_contact(self, phone: str) -> bool:
        """Remove a contact. Returns True if removed, False if not found."""
        phone = normalize_phone(phone)
        if phone not in self.contacts:
            return False
        del self.contacts[phone]
        return self.save_contacts()

    def get_contact_name(self, phone: str) -> Optional[str]:
        try:
            return self.contacts.get(normalize_phone(phone))
        except ValueError:
            return None

    def display_name(self, phone: str) -> str:
        """Contact name if known, otherwise the phone itself."""
        return self.get_contact_name(phone) or phone

    def get_all_contacts(self) -> List[Tuple[str, str]]:
        """Get all ``(phone, name)`` pairs sorted by name."""
        return sorted(self.contacts.items(), key=lambda item: item[1].lower())

    def __len__(self) -> int:
        return len(self.contacts)

"""Contact → vCard 3.0 transformation for CardDAV push.

Usage:
    vcard = VCardTransformer.contact_to_vcard(contact)
"""
from __future__ import annotations
from typing import Any, List

from ..exceptions import ValidationError

VCARD_LINE_BREAK = "\r\n"


def _escape(value: str) -> str:
    """Escape a text value (RFC 6350 §3.4)."""
    return (
        value.replace("\\", "\\\\")
        .replace(",", "\\,")
        .replace(";", "\\;")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
        .replace("\r", "\\n")
    )


def _single_line(value: str) -> str:
    """URI values are not text-escaped, so line breaks are dropped instead."""
    return value.replace("\r", "").replace("\n", "").strip()


def _get(contact: Any, field: str) -> str:
    if isinstance(contact, dict):
        value = contact.get(field)
    else:
        value = getattr(contact, field, None)
    return str(value).strip() if value else ""


class VCardTransformer:
    """Builds the structured contact-card document a CardDAV server stores."""

    @staticmethod
    def validate(contact: Any) -> None:
        """Check the fields a card cannot be built without.

        Raises:
            ValidationError: Missing display name, missing or malformed email
        """
        if not VCardTransformer.full_name(contact):
            raise ValidationError("Contact name is required")
        email = _get(contact, "email")
        if not email:
            raise ValidationError("Contact email is required")
        local, _, domain = email.rpartition("@")
        if not local or "." not in domain or any(c.isspace() for c in email):
            raise ValidationError(f"Contact email is invalid: {email!r}")

    @staticmethod
    def full_name(contact: Any) -> str:
        first_name = _get(contact, "first_name")
        last_name = _get(contact, "last_name")
        if first_name and last_name:
            return f"{first_name} {last_name}"
        return _get(contact, "name") or first_name or last_name

    @staticmethod
    def contact_to_vcard(contact: Any) -> str:
        """Convert a contact (model or dict with model field names) to vCard 3.0.

        Example:
            >>> card = VCardTransformer.contact_to_vcard({
            ...     "first_name": "Alice", "last_name": "Smith",
            ...     "email": "alice@example.com", "phone": "+1 555 0100",
            ... })
            >>> card.splitlines()[2]
            'FN:Alice Smith'
        """
        VCardTransformer.validate(contact)

        full_name = VCardTransformer.full_name(contact)
        first_name = _get(contact, "first_name")
        last_name = _get(contact, "last_name")

        lines: List[str] = ["BEGIN:VCARD", "VERSION:3.0", f"FN:{_escape(full_name)}"]

        # Structured name; fall back to splitting the display name
        if first_name or last_name:
            lines.append(f"N:{_escape(last_name)};{_escape(first_name)};;;")
        else:
            parts = full_name.split()
            last = parts[-1] if len(parts) > 1 else ""
            first = " ".join(parts[:-1]) if len(parts) > 1 else full_name
            lines.append(f"N:{_escape(last)};{_escape(first)};;;")

        lines.append(f"EMAIL:{_escape(_get(contact, 'email'))}")

        phone = _get(contact, "phone")
        if phone:
            lines.append(f"TEL:{_escape(phone)}")

        department = _get(contact, "department")
        company = _get(contact, "company")
        if department:
            lines.append(f"ORG:{_escape(department)}")
        elif company:
            lines.append(f"ORG:{_escape(company)}")

        title = _get(contact, "title")
        if title:
            lines.append(f"TITLE:{_escape(title)}")

        if department and company and department != company:
            lines.append(f"X-DEPARTMENT:{_escape(department)}")

        linkedin = _get(contact, "linkedin")
        if linkedin:
            lines.append(f"URL:{_single_line(linkedin)}")

        notes = _get(contact, "notes")
        if notes:
            lines.append(f"NOTE:{_escape(notes)}")

        lines.append("END:VCARD")
        return VCARD_LINE_BREAK.join(lines)

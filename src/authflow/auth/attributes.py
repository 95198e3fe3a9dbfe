"""Conversions between provider attribute lists and plain dicts."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Union

from authflow.models import UserAttribute

_VERIFIED_FLAGS = ("email_verified", "phone_number_verified")
_CONTACT_ATTRIBUTES = ("email", "phone_number")


def _is_truthy(value: Any) -> bool:
    if value is True:
        return True
    return isinstance(value, str) and value.lower() == "true"


def _as_attribute(item: Union[UserAttribute, Mapping[str, Any]]) -> UserAttribute:
    if isinstance(item, UserAttribute):
        return item
    return UserAttribute.model_validate(item)


def attributes_to_object(
    attributes: Iterable[Union[UserAttribute, Mapping[str, Any]]] | None,
) -> dict[str, Any]:
    """Flatten ``[{Name, Value}]`` into ``{name: value}``.

    ``email_verified`` and ``phone_number_verified`` become booleans.
    """
    result: dict[str, Any] = {}
    for item in attributes or ():
        attribute = _as_attribute(item)
        if attribute.name in _VERIFIED_FLAGS:
            result[attribute.name] = _is_truthy(attribute.value)
        else:
            result[attribute.name] = attribute.value
    return result


def partition_verified(
    attributes: Iterable[Union[UserAttribute, Mapping[str, Any]]] | None,
) -> dict[str, dict[str, Any]]:
    """Split the contact attributes into ``verified`` and ``unverified``.

    Example::

        >>> partition_verified([
        ...     {"Name": "email", "Value": "a@example.com"},
        ...     {"Name": "email_verified", "Value": "true"},
        ... ])
        {'verified': {'email': 'a@example.com'}, 'unverified': {}}
    """
    attrs = attributes_to_object(attributes)
    verified: dict[str, Any] = {}
    unverified: dict[str, Any] = {}
    for name in _CONTACT_ATTRIBUTES:
        value = attrs.get(name)
        if not value:
            continue
        if attrs.get(f"{name}_verified"):
            verified[name] = value
        else:
            unverified[name] = value
    return {"verified": verified, "unverified": unverified}


def updatable_attributes(attributes: Mapping[str, Any]) -> list[UserAttribute]:
    """Build the attribute list for an update, skipping read-only names."""
    return [
        UserAttribute(name=name, value=value)
        for name, value in attributes.items()
        if name != "sub" and "_verified" not in name
    ]


def mfa_type_from_user_data(data: Mapping[str, Any]) -> Optional[str]:
    """Resolve the preferred MFA type from ``get_user_data`` output.

    Without an explicit preference, an absent ``UserMFASettingList`` falls
    back to the legacy ``MFAOptions`` (any entry means SMS) and an empty
    list means no MFA. A non-empty list with no preference is ambiguous
    and yields ``None``.
    """
    preferred = data.get("PreferredMfaSetting")
    if preferred:
        return preferred
    mfa_list = data.get("UserMFASettingList")
    if mfa_list is None:
        return "SMS_MFA" if data.get("MFAOptions") else "NOMFA"
    if not mfa_list:
        return "NOMFA"
    return None

import dataclasses
import re

from aiusage.models import UsageRecord

_WHITESPACE_SPLIT = re.compile(r"(\s+)")


def _mask_generic(value: "str") -> "str":
    """
    length-preserving mask that keeps the first and last character.
    """
    if len(value) <= 2:
        return "*" * len(value)
    return value[0] + "*" * (len(value) - 2) + value[-1]


def _mask_email(token: "str") -> "str":
    parts = token.split("@")
    if len(parts) != 2:
        return _mask_generic(token)
    local, domain = parts
    if len(local) <= 2:
        masked_local = "*" * len(local)
    else:
        masked_local = f"{local[0]}...{local[-1]}"
    return f"{masked_local}@{domain}"


def mask(text: "str | None", account_name: "str | None" = None) -> "str | None":
    """
    masks account names and email addresses in text meant for display
    or logs.

    When account_name occurs in the text only those occurrences are
    masked. Otherwise, if the text holds email addresses, their local
    part is shortened and domains are kept. Anything else is masked
    as a whole.
    """
    if text is None:
        return None
    if not text:
        return text

    if account_name and account_name in text:
        return text.replace(account_name, _mask_generic(account_name))

    if "@" in text:
        # splitting with a capture group keeps the original whitespace
        parts = _WHITESPACE_SPLIT.split(text)
        return "".join(
            _mask_email(part) if "@" in part and "." in part else part
            for part in parts
        )

    return _mask_generic(text)


def mask_record(record: "UsageRecord") -> "UsageRecord":
    """
    returns a copy of the record with its account name masked, along
    with any occurrence of that name or of an email address in the
    description. Descriptions without such identifiers stay readable.
    """
    account = record.account_name
    description = record.description
    if (account and account in description) or "@" in description:
        description = mask(description, account or None) or ""
    return dataclasses.replace(
        record,
        description=description,
        account_name=mask(account) or "",
    )

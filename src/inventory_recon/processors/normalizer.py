"""
Hostname normalization for cross-source device matching.
"""

from typing import Any, Dict, FrozenSet, Iterable, Optional


def normalize_identity(hostname: Optional[str], strip_domain: bool = False) -> str:
    """
    Normalize a hostname into a device identity.

    Two hostnames refer to the same device when their trimmed, upper-cased
    forms are equal.

    Args:
        hostname: Raw hostname as reported by a source
        strip_domain: Keep only the first DNS label (FQDN -> short name)

    Returns:
        Normalized identity, or '' when the input is null or blank
    """
    if hostname is None:
        return ''

    normalized = str(hostname).strip()

    if strip_domain:
        normalized = normalized.split('.')[0].strip()

    return normalized.upper()


def normalize_inventory(
    hostnames: Iterable[Optional[str]],
    strip_domain: bool = False
) -> FrozenSet[str]:
    """
    Normalize a sequence of raw hostnames into a set of identities.
    Blank and null entries are dropped; case/whitespace variants collapse.
    """
    identities = set()

    for hostname in hostnames:
        identity = normalize_identity(hostname, strip_domain)
        if identity:
            identities.add(identity)

    return frozenset(identities)


def count_duplicates(
    hostnames: Iterable[Optional[str]],
    strip_domain: bool = False
) -> Dict[str, int]:
    """Return identities that appear more than once in one source, with counts."""
    counts: Dict[str, int] = {}

    for hostname in hostnames:
        identity = normalize_identity(hostname, strip_domain)
        if identity:
            counts[identity] = counts.get(identity, 0) + 1

    return {k: v for k, v in counts.items() if v > 1}


def clean_string(value: Any) -> str:
    """Clean and convert a value to string."""
    if value is None:
        return ''
    if isinstance(value, (list, dict)):
        return str(value)
    return str(value).strip()

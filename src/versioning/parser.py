"""Token parsing utilities for package specifiers."""

from typing import Optional, Tuple

from errors import ManifestError
from .models import PackageSpec


def tokenize_rightmost_at(s: str) -> Tuple[str, Optional[str]]:
    """Return (name, constraint or None) using the rightmost-``@`` rule.

    A leading ``@`` marks a scope and is never treated as the separator.
    """
    s = s.strip()
    at = s.rfind("@")
    if at <= 0:
        return s, None
    name = s[:at].strip()
    constraint = s[at + 1:].strip()
    return name, constraint or None


def parse_spec_token(token: str) -> PackageSpec:
    """Parse a CLI token such as ``lodash@^4`` into a PackageSpec.

    Raises:
        ManifestError: If the token has no package name.
    """
    name, constraint = tokenize_rightmost_at(token)
    if not name or name == "@":
        raise ManifestError(f"Invalid package specifier: {token!r}")
    return PackageSpec(name=name, constraint=constraint or "")


def parse_manifest_entry(name: str, raw_constraint: Optional[str]) -> PackageSpec:
    """Construct a PackageSpec from one manifest dependency entry."""
    if not isinstance(name, str) or not name.strip():
        raise ManifestError(f"Invalid dependency name in manifest: {name!r}")
    constraint = raw_constraint.strip() if isinstance(raw_constraint, str) else ""
    return PackageSpec(name=name.strip(), constraint=constraint)

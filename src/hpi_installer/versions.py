from __future__ import annotations


def _cmp(a: object, b: object) -> int:
    if a < b:  # type: ignore[operator]
        return -1
    if a > b:  # type: ignore[operator]
        return 1
    return 0


def compare_versions(a: str, b: str) -> int:
    """
    Compare dot-separated plugin versions.

    Components are compared left to right, numerically when both are digits and as plain
    strings otherwise. The shorter version is padded with zeros, so ``1.2 == 1.2.0``.
    """
    pa = a.strip().split(".")
    pb = b.strip().split(".")
    width = max(len(pa), len(pb))
    pa += ["0"] * (width - len(pa))
    pb += ["0"] * (width - len(pb))

    for x, y in zip(pa, pb):
        if x.isdigit() and y.isdigit():
            result = _cmp(int(x), int(y))
        else:
            result = _cmp(x, y)
        if result:
            return result
    return 0


def version_at_least(version: str, minimum: str) -> bool:
    return compare_versions(version, minimum) >= 0


def major_minor(version: str | None) -> str:
    if not version:
        return ""
    parts = version.strip().split(".")
    return ".".join(parts[:2])

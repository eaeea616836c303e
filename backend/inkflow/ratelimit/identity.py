from fastapi import Request


def resolve_identity(req: Request) -> str:
    """
    Precedence:
    1) first x-forwarded-for entry
    2) x-real-ip
    3) cf-connecting-ip
    4) socket peer
    """
    forwarded = req.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return f"ip:{first}"
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = (req.headers.get(header) or "").strip()
        if value:
            return f"ip:{value}"

    client = getattr(req, "client", None)
    ip = getattr(client, "host", None) if client else None
    return f"ip:{ip or 'unknown'}"

from fastapi import Response


def set_rate_headers(res: Response, remaining: int, limit: int, reset_epoch_s: float) -> None:
    res.headers["X-RateLimit-Remaining"] = str(max(remaining, 0))
    res.headers["X-RateLimit-Limit"] = str(limit)
    res.headers["X-RateLimit-Reset"] = str(int(reset_epoch_s))

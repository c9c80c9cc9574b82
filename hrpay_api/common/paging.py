# hrpay_api/common/paging.py
from flask import request
from sqlalchemy import or_

DEFAULT_PAGE = 1
DEFAULT_SIZE = 20
MAX_SIZE = 100


def page_limit():
    try:
        page = max(int(request.args.get("page", DEFAULT_PAGE)), 1)
    except ValueError:
        page = DEFAULT_PAGE
    try:
        size = int(request.args.get("size", DEFAULT_SIZE))
        size = max(1, min(size, MAX_SIZE))
    except ValueError:
        size = DEFAULT_SIZE
    return page, size


def text_q():
    q = request.args.get("q", "")
    return q.strip() or None


def apply_q_search(query, *cols):
    q = (text_q() or "").lower()
    if not q:
        return query
    like = f"%{q}%"
    return query.filter(or_(*[c.ilike(like) for c in cols]))

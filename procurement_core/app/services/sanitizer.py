"""
Response sanitizing: strips vendor and price data from outbound schemas for
callers that may not see it. Works on copies only; ORM rows are never touched.
"""

from typing import List, Optional, TypeVar, Union

from ..schemas import Actor, LineItemOut, RequestOut, ReturnRequestOut
from .access_control import AccessControlPolicy

VENDOR_FIELDS = {"assigned_vendor": None, "assigned_vendor_id": None, "assigned_price": None}

Outbound = TypeVar("Outbound", RequestOut, LineItemOut, ReturnRequestOut)


class ResponseSanitizer:

    @staticmethod
    def strip_line_item(item: LineItemOut) -> LineItemOut:
        return item.model_copy(update=VENDOR_FIELDS)

    @staticmethod
    def strip_return_request(ret: ReturnRequestOut) -> ReturnRequestOut:
        if ret.line_item is None:
            return ret.model_copy()
        return ret.model_copy(update={"line_item": ResponseSanitizer.strip_line_item(ret.line_item)})

    @staticmethod
    def strip_request(request: RequestOut) -> RequestOut:
        return request.model_copy(update={
            "line_items": [ResponseSanitizer.strip_line_item(i) for i in request.line_items]
        })

    @staticmethod
    def sanitize(actor: Actor, value: Optional[Union[Outbound, List[Outbound]]]):
        """Project one schema (or a list of them) for the given actor."""
        if value is None or AccessControlPolicy.can_see_vendor_information(actor):
            return value
        if isinstance(value, list):
            return [ResponseSanitizer.sanitize(actor, v) for v in value]
        if isinstance(value, RequestOut):
            return ResponseSanitizer.strip_request(value)
        if isinstance(value, LineItemOut):
            return ResponseSanitizer.strip_line_item(value)
        if isinstance(value, ReturnRequestOut):
            return ResponseSanitizer.strip_return_request(value)
        raise TypeError(f"Cannot sanitize {type(value).__name__}")

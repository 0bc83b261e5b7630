"""ECount ERP Connector Package.

Books sales documents into ECount through its open API (OAPI V2).
"""

from connectors.ecount.client import (
    ECountApiError,
    ECountAuthenticationError,
    ECountClient,
    ECountCredentials,
    SaveSaleResult,
    parse_save_sale_response,
)
from connectors.ecount.connector import (
    ECountConnector,
    render_bulk_datas,
    render_save_sale_body,
)

__all__ = [
    "ECountApiError",
    "ECountAuthenticationError",
    "ECountClient",
    "ECountCredentials",
    "SaveSaleResult",
    "parse_save_sale_response",
    "ECountConnector",
    "render_bulk_datas",
    "render_save_sale_body",
]

"""Services package for the CRPT API client.

This package provides:
- The rate-limited, authenticated API client (CrptApiClient)
- Document submission on top of it (DocumentService)
"""

from crptapi.app.services.client import CrptApiClient
from crptapi.app.services.documents import (
    CreateDocumentRequest,
    CreateDocumentResponse,
    Description,
    DocumentFormat,
    DocumentService,
    DocumentType,
    IntroduceGoodsDocument,
    Product,
    ProductGroup,
)

__all__ = [
    "CrptApiClient",
    "CreateDocumentRequest",
    "CreateDocumentResponse",
    "Description",
    "DocumentFormat",
    "DocumentService",
    "DocumentType",
    "IntroduceGoodsDocument",
    "Product",
    "ProductGroup",
]

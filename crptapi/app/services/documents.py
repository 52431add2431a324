"""Document submission to the CRPT "create document" endpoint.

Only the "introduce goods into circulation" document is supported. The
document itself travels as a JSON string inside the create request.
"""

import asyncio
from datetime import date
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from crptapi.app.services.client import CrptApiClient


class DocumentFormat(str, Enum):
    MANUAL = "MANUAL"
    XML = "XML"
    CSV = "CSV"


class DocumentType(str, Enum):
    LP_INTRODUCE_GOODS = "LP_INTRODUCE_GOODS"
    LP_INTRODUCE_GOODS_CSV = "LP_INTRODUCE_GOODS_CSV"
    LP_INTRODUCE_GOODS_XML = "LP_INTRODUCE_GOODS_XML"


_PRODUCT_GROUPS: dict[str, tuple[int, str]] = {
    "CLOTHES": (1, "Предметы одежды, белье постельное, столовое, туалетное и кухонное"),
    "SHOES": (2, "Обувные товары"),
    "TOBACCO": (3, "Табачная продукция"),
    "PERFUMERY": (4, "Духи и туалетная вода"),
    "TIRES": (5, "Шины и покрышки пневматические резиновые новые"),
    "ELECTRONICS": (6, "Фотокамеры (кроме кинокамер), фотовспышки и лампы-вспышки"),
    "PHARMA": (7, "Лекарственные препараты для медицинского применения"),
    "MILK": (8, "Молочная продукция"),
    "BICYCLE": (9, "Велосипеды и велосипедные рамы"),
    "WHEELCHAIRS": (10, "Кресла-коляски"),
}


class ProductGroup(str, Enum):
    """Product groups tracked by the marking system, serialised by name."""

    CLOTHES = "CLOTHES"
    SHOES = "SHOES"
    TOBACCO = "TOBACCO"
    PERFUMERY = "PERFUMERY"
    TIRES = "TIRES"
    ELECTRONICS = "ELECTRONICS"
    PHARMA = "PHARMA"
    MILK = "MILK"
    BICYCLE = "BICYCLE"
    WHEELCHAIRS = "WHEELCHAIRS"

    @property
    def code(self) -> int:
        return _PRODUCT_GROUPS[self.value][0]

    @property
    def description(self) -> str:
        return _PRODUCT_GROUPS[self.value][1]

    @classmethod
    def from_code(cls, code: int) -> "ProductGroup":
        for group in cls:
            if group.code == code:
                return group
        raise ValueError(f"Unknown product group code: {code}")

    @classmethod
    def parse(cls, value: Any) -> Any:
        """Accept a member, its numeric code or its name in any case."""
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return cls.from_code(value)
        if isinstance(value, str) and value.upper() in cls.__members__:
            return cls[value.upper()]
        return value


class Description(BaseModel):
    participant_inn: Optional[str] = Field(
        default=None,
        serialization_alias="participantInn",
        validation_alias=AliasChoices("participantInn", "participant_inn"),
    )


class Product(BaseModel):
    certificate_document: Optional[str] = None
    certificate_document_date: Optional[date] = None
    certificate_document_number: Optional[str] = None
    owner_inn: Optional[str] = None
    producer_inn: Optional[str] = None
    production_date: Optional[date] = None
    tnved_code: Optional[str] = None
    uit_code: Optional[str] = None
    uitu_code: Optional[str] = None


class IntroduceGoodsDocument(BaseModel):
    """Goods introduction document (production in the Russian Federation)."""

    description: Optional[Description] = None
    doc_id: Optional[str] = None
    doc_status: Optional[str] = None
    doc_type: Optional[str] = None
    import_request: Optional[bool] = Field(
        default=None,
        validation_alias=AliasChoices("import_request", "importRequest"),
    )
    owner_inn: Optional[str] = None
    participant_inn: Optional[str] = None
    producer_inn: Optional[str] = None
    production_date: Optional[date] = None
    production_type: Optional[str] = None
    products: Optional[list[Product]] = None
    reg_date: Optional[date] = None
    reg_number: Optional[str] = None


class CreateDocumentRequest(BaseModel):
    document_format: DocumentFormat
    product_document: str
    product_group: ProductGroup
    signature: str
    type: DocumentType

    @field_validator("product_group", mode="before")
    @classmethod
    def parse_product_group(cls, v: Any) -> Any:
        return ProductGroup.parse(v)


class CreateDocumentResponse(BaseModel):
    """Result of a create call: the document id in ``value`` on success."""

    model_config = ConfigDict(extra="ignore")

    value: Optional[str] = None
    code: Optional[str] = None
    error_message: Optional[str] = None
    description: Optional[str] = None


class DocumentService:
    """Submits documents through a CrptApiClient."""

    INTRODUCE_GOODS_ENDPOINT = "introduce_goods"

    def __init__(self, client: CrptApiClient):
        self._client = client

    @staticmethod
    def build_introduce_goods_request(
        document: IntroduceGoodsDocument,
        product_group: ProductGroup,
        signature: str,
    ) -> CreateDocumentRequest:
        return CreateDocumentRequest(
            document_format=DocumentFormat.MANUAL,
            product_document=document.model_dump_json(by_alias=True),
            product_group=product_group,
            signature=signature,
            type=DocumentType.LP_INTRODUCE_GOODS,
        )

    async def introduce_goods(
        self,
        document: IntroduceGoodsDocument,
        product_group: ProductGroup,
        signature: str,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CreateDocumentResponse:
        """Register goods produced in the RF as entering circulation.

        Args:
            document: The goods introduction document
            product_group: Product group; also sent as the ``pg`` query parameter
            signature: Detached signature of the document
            cancel_event: Optional signal that abandons the wait for a permit

        Returns:
            The decoded create-document response.
        """
        request = self.build_introduce_goods_request(document, product_group, signature)
        return await self._client.call_model(
            self.INTRODUCE_GOODS_ENDPOINT,
            request,
            CreateDocumentResponse,
            query_params={"pg": product_group.name.lower()},
            cancel_event=cancel_event,
        )

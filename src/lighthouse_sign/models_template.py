"""Block-based document templates for GLRS agreements.

A template is an ordered list of typed blocks. Structure and content
blocks (sections, headings, paragraphs, lists, page breaks) carry no
signer. Signable blocks are tagged with the signer role that owns them
and are the only blocks a signer may fill.

Blocks are a pydantic discriminated union on ``type`` so that every
consumer dispatches on a concrete class rather than poking at optional
attributes.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class SignerRole(str, Enum):
    """Signer roles, in conventional signing order."""

    PIR = "pir"
    FAMILY = "family"
    GLRS = "glrs"


class BlockCategory(str, Enum):
    """Editor palette grouping for block types."""

    STRUCTURE = "structure"
    CONTENT = "content"
    SIGNATURE = "signature"
    LEGACY = "legacy"


class BlockType(str, Enum):
    """Every block type a template may contain."""

    SECTION = "section"
    HEADING = "heading"
    PAGE_BREAK = "pageBreak"
    PARAGRAPH = "paragraph"
    BULLET_LIST = "bulletList"
    SIGNATURE_FIELD = "signatureField"
    INITIALS_FIELD = "initialsField"
    DATE_FIELD = "dateField"
    TEXT_INPUT_FIELD = "textInputField"
    CHECKBOX_FIELD = "checkboxField"
    DROPDOWN_FIELD = "dropdownField"
    SIGNATURE_BLOCK = "signatureBlock"
    ACKNOWLEDGMENT = "acknowledgment"


class TemplateType(str, Enum):
    """Kinds of template records."""

    DOCUMENT = "document"
    COVER = "cover"
    HEADER = "header"
    FOOTER = "footer"
    END_PAGE = "endPage"
    UPLOADED = "uploaded"


class TemplateStatus(str, Enum):
    """Template lifecycle."""

    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


# ---------------------------------------------------------------------------
# Role display definitions
# ---------------------------------------------------------------------------

class RoleDefinition(BaseModel):
    """Display metadata for a signer role. Carries no semantics."""

    label: str
    full_label: str
    color: str


ROLE_DEFINITIONS: dict[SignerRole, RoleDefinition] = {
    SignerRole.PIR: RoleDefinition(
        label="PIR", full_label="Person in Recovery", color="#3B82F6"
    ),
    SignerRole.FAMILY: RoleDefinition(
        label="Family", full_label="Family Member / Guardian", color="#22C55E"
    ),
    SignerRole.GLRS: RoleDefinition(
        label="GLRS", full_label="GLRS Representative", color="#F97316"
    ),
}

DEFAULT_ROLE_ORDER: dict[SignerRole, int] = {
    SignerRole.PIR: 0,
    SignerRole.FAMILY: 1,
    SignerRole.GLRS: 2,
}


def role_label(role: SignerRole) -> str:
    """Short display label for a role (``PIR``, ``Family``, ``GLRS``)."""
    return ROLE_DEFINITIONS[role].label


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------

def _block_id() -> str:
    return f"block_{uuid4().hex[:12]}"


class BaseBlock(BaseModel):
    """Fields shared by every block.

    Attributes:
        id: Stable opaque id used for ordering and field-value addressing.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=_block_id)


class SectionBlock(BaseBlock):
    type: Literal["section"] = "section"
    title: str = "Section Title"
    number: str = "1"


class HeadingBlock(BaseBlock):
    type: Literal["heading"] = "heading"
    content: str = "Heading Text"
    level: int = Field(3, ge=1, le=4)


class PageBreakBlock(BaseBlock):
    type: Literal["pageBreak"] = "pageBreak"


class ParagraphBlock(BaseBlock):
    type: Literal["paragraph"] = "paragraph"
    content: str = ""


class BulletListBlock(BaseBlock):
    type: Literal["bulletList"] = "bulletList"
    items: list[str] = Field(default_factory=list)


class SignableBlock(BaseBlock):
    """A block owned by one signer role.

    Attributes:
        label: Prompt shown next to the field.
        role: Signer role that fills this block.
        required: Whether the owner must fill it before signing.
    """

    label: str = ""
    role: SignerRole = SignerRole.PIR
    required: bool = True

    def check_value(self, value: Any) -> Optional[str]:
        """Return a problem description for ``value``, or None if acceptable."""
        return None


class SignatureFieldBlock(SignableBlock):
    type: Literal["signatureField"] = "signatureField"
    label: str = "Signature"
    field_type: Literal["signature"] = Field("signature", alias="fieldType")


class InitialsFieldBlock(SignableBlock):
    type: Literal["initialsField"] = "initialsField"
    label: str = "Initials"
    field_type: Literal["initials"] = Field("initials", alias="fieldType")


class DateFieldBlock(SignableBlock):
    type: Literal["dateField"] = "dateField"
    label: str = "Date"
    field_type: Literal["date"] = Field("date", alias="fieldType")
    auto_fill: bool = Field(True, alias="autoFill")


class TextInputFieldBlock(SignableBlock):
    type: Literal["textInputField"] = "textInputField"
    label: str = "Text Input"
    required: bool = False
    field_type: Literal["textInput"] = Field("textInput", alias="fieldType")
    placeholder: str = ""
    max_length: Optional[int] = Field(100, alias="maxLength")

    def check_value(self, value: Any) -> Optional[str]:
        if value is None or self.max_length is None:
            return None
        if len(str(value)) > self.max_length:
            return f"'{self.label}' is limited to {self.max_length} characters"
        return None


class CheckboxFieldBlock(SignableBlock):
    type: Literal["checkboxField"] = "checkboxField"
    label: str = "I agree"
    field_type: Literal["checkbox"] = Field("checkbox", alias="fieldType")


class DropdownFieldBlock(SignableBlock):
    type: Literal["dropdownField"] = "dropdownField"
    label: str = "Select"
    field_type: Literal["dropdown"] = Field("dropdown", alias="fieldType")
    options: list[str] = Field(
        default_factory=lambda: ["Option 1", "Option 2", "Option 3"]
    )

    def check_value(self, value: Any) -> Optional[str]:
        if value in (None, ""):
            return None
        if value not in self.options:
            return f"'{value}' is not an option for '{self.label}'"
        return None


class SignatureBlockLegacy(SignableBlock):
    """Combined signature block kept for templates built before per-field blocks."""

    type: Literal["signatureBlock"] = "signatureBlock"
    label: str = "Signature"


class AcknowledgmentBlock(SignableBlock):
    type: Literal["acknowledgment"] = "acknowledgment"
    text: str = "I acknowledge that I have read and understood the above."


Block = Annotated[
    Union[
        SectionBlock,
        HeadingBlock,
        PageBreakBlock,
        ParagraphBlock,
        BulletListBlock,
        SignatureFieldBlock,
        InitialsFieldBlock,
        DateFieldBlock,
        TextInputFieldBlock,
        CheckboxFieldBlock,
        DropdownFieldBlock,
        SignatureBlockLegacy,
        AcknowledgmentBlock,
    ],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Block catalog
# ---------------------------------------------------------------------------

class BlockDefinition(BaseModel):
    """Palette entry for a block type."""

    type: BlockType
    label: str
    category: BlockCategory
    model: type[BaseBlock]


BLOCK_CATALOG: dict[BlockType, BlockDefinition] = {
    d.type: d
    for d in (
        BlockDefinition(type=BlockType.SECTION, label="Section Header",
                        category=BlockCategory.STRUCTURE, model=SectionBlock),
        BlockDefinition(type=BlockType.HEADING, label="Heading",
                        category=BlockCategory.STRUCTURE, model=HeadingBlock),
        BlockDefinition(type=BlockType.PAGE_BREAK, label="Page Break",
                        category=BlockCategory.STRUCTURE, model=PageBreakBlock),
        BlockDefinition(type=BlockType.PARAGRAPH, label="Paragraph",
                        category=BlockCategory.CONTENT, model=ParagraphBlock),
        BlockDefinition(type=BlockType.BULLET_LIST, label="Bullet List",
                        category=BlockCategory.CONTENT, model=BulletListBlock),
        BlockDefinition(type=BlockType.SIGNATURE_FIELD, label="Signature",
                        category=BlockCategory.SIGNATURE, model=SignatureFieldBlock),
        BlockDefinition(type=BlockType.INITIALS_FIELD, label="Initials",
                        category=BlockCategory.SIGNATURE, model=InitialsFieldBlock),
        BlockDefinition(type=BlockType.DATE_FIELD, label="Date",
                        category=BlockCategory.SIGNATURE, model=DateFieldBlock),
        BlockDefinition(type=BlockType.TEXT_INPUT_FIELD, label="Text Input",
                        category=BlockCategory.SIGNATURE, model=TextInputFieldBlock),
        BlockDefinition(type=BlockType.CHECKBOX_FIELD, label="Checkbox",
                        category=BlockCategory.SIGNATURE, model=CheckboxFieldBlock),
        BlockDefinition(type=BlockType.DROPDOWN_FIELD, label="Dropdown",
                        category=BlockCategory.SIGNATURE, model=DropdownFieldBlock),
        BlockDefinition(type=BlockType.SIGNATURE_BLOCK, label="Signature Block",
                        category=BlockCategory.LEGACY, model=SignatureBlockLegacy),
        BlockDefinition(type=BlockType.ACKNOWLEDGMENT, label="Acknowledgment",
                        category=BlockCategory.LEGACY, model=AcknowledgmentBlock),
    )
}

SIGNATURE_CAPTURE_TYPES = frozenset({
    BlockType.SIGNATURE_FIELD.value,
    BlockType.SIGNATURE_BLOCK.value,
    BlockType.INITIALS_FIELD.value,
})


def new_block(block_type: BlockType, **props: Any) -> BaseBlock:
    """Create a block of ``block_type`` with its palette defaults."""
    return BLOCK_CATALOG[block_type].model(**props)


def blocks_by_category(category: BlockCategory) -> list[BlockDefinition]:
    """Palette entries in one category."""
    return [d for d in BLOCK_CATALOG.values() if d.category == category]


# ---------------------------------------------------------------------------
# Block queries
# ---------------------------------------------------------------------------

def signable_blocks(blocks: list[BaseBlock]) -> list[SignableBlock]:
    """Blocks that belong to a signer, in document order."""
    return [b for b in blocks if isinstance(b, SignableBlock)]


def blocks_for_role(blocks: list[BaseBlock], role: SignerRole) -> list[SignableBlock]:
    """Signable blocks owned by ``role``, in document order."""
    return [b for b in signable_blocks(blocks) if b.role == role]


def participating_roles(blocks: list[BaseBlock]) -> list[SignerRole]:
    """Distinct roles referenced by any signable block.

    Returned in conventional signing order (pir, family, glrs).
    """
    present = {b.role for b in signable_blocks(blocks)}
    return [r for r in SignerRole if r in present]


def has_signature_capture(blocks: list[BaseBlock]) -> bool:
    """True if at least one block captures a signature or initials."""
    return any(b.type in SIGNATURE_CAPTURE_TYPES for b in signable_blocks(blocks))


def is_filled(value: Any) -> bool:
    """A field value counts as filled when present and not an empty string."""
    return value is not None and value != ""


def describe_block(block: BaseBlock, value: Any = None) -> str:
    """Plain-text rendering of one block, used for CLI and export payloads.

    Raises:
        TypeError: For a block class this function does not know about.
    """
    if isinstance(block, SectionBlock):
        return f"{block.number}. {block.title}"
    if isinstance(block, HeadingBlock):
        return "#" * block.level + " " + block.content
    if isinstance(block, PageBreakBlock):
        return "---"
    if isinstance(block, ParagraphBlock):
        return block.content
    if isinstance(block, BulletListBlock):
        return "\n".join(f"- {item}" for item in block.items)
    if isinstance(block, AcknowledgmentBlock):
        mark = "x" if value else " "
        return f"[{mark}] {block.text} ({role_label(block.role)})"
    if isinstance(block, CheckboxFieldBlock):
        mark = "x" if value else " "
        return f"[{mark}] {block.label} ({role_label(block.role)})"
    if isinstance(
        block,
        (
            SignatureFieldBlock,
            InitialsFieldBlock,
            SignatureBlockLegacy,
        ),
    ):
        shown = "signed" if is_filled(value) else "________"
        return f"{block.label} ({role_label(block.role)}): {shown}"
    if isinstance(block, (DateFieldBlock, TextInputFieldBlock, DropdownFieldBlock)):
        shown = value if is_filled(value) else "________"
        return f"{block.label} ({role_label(block.role)}): {shown}"
    raise TypeError(f"Unhandled block type: {type(block).__name__}")


# ---------------------------------------------------------------------------
# Template
# ---------------------------------------------------------------------------

class TemplateContent(BaseModel):
    """Ordered block list of a document."""

    blocks: list[Block] = Field(default_factory=list)


class Template(BaseModel):
    """Reusable document template.

    Attributes:
        id: Unique identifier.
        name: Template name (used as the default document title).
        description: What the template is for.
        type: Kind of template; only ``document`` templates are sendable.
        status: Lifecycle; only ``active`` templates are offered for sending.
        category: Free-form grouping (intake, consent, ...).
        tenant_id: Owning tenant.
        created_by: User id of the author.
        content: Block content.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    description: str = ""
    type: TemplateType = TemplateType.DOCUMENT
    status: TemplateStatus = TemplateStatus.ACTIVE
    category: Optional[str] = None
    tenant_id: str = Field(..., alias="tenantId")
    created_by: Optional[str] = Field(None, alias="createdBy")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="createdAt"
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="updatedAt"
    )
    content: TemplateContent = Field(default_factory=TemplateContent)

    @property
    def is_sendable(self) -> bool:
        """Active document templates can be sent for signature."""
        return (
            self.type == TemplateType.DOCUMENT
            and self.status == TemplateStatus.ACTIVE
        )

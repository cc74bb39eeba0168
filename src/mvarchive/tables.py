"""Registry of the project tables and the order they are archived in.

The copy order below is the order existing archive databases were populated
in. Deletion walks it backwards so that child rows go before the rows they
reference, and the ``Projects`` root row is removed last.
"""

from dataclasses import dataclass

PROJECT_TABLE = "Projects"
PROJECT_KEY_COLUMN = "LinkID"
LINK_COLUMN = "LinkIDProject"
FALLBACK_ORDER_COLUMN = "ID"

# Rows per page when copying a table
BATCH_SIZE = 1000


@dataclass(frozen=True)
class TableSpec:
    """One archivable table."""

    name: str
    project_dependent: bool = True
    binary_payload: bool = False

    @property
    def key_column(self) -> str:
        """Column holding the project key for this table."""
        return LINK_COLUMN if self.project_dependent else PROJECT_KEY_COLUMN


ROOT_TABLE = TableSpec(PROJECT_TABLE, project_dependent=False)

# Tables holding drawings and file blobs; their pages are much heavier
_BINARY_TABLES = frozenset(
    {
        "AutoCADDrawings",
        "CutPartsFiles",
        "DoorWizardFiles",
        "EdgebandFiles",
        "GlobalFiles",
        "HardwareFiles",
        "Attachment",
        "FaceFrameImages",
    }
)

_COPY_SEQUENCE = (
    "Locations",
    "Products",
    "Subassemblies",
    "Parts",
    "Hardware",
    "Edgebanding",
    "AutoCADDrawings",
    "CutPartsFiles",
    "EdgebandFiles",
    "HardwareFiles",
    "DoorWizardFiles",
    "GlobalFiles",
    "Factory",
    "Bundles",
    "BundleItems",
    "WorkOrders",
    "Activities",
    "BluePrintViews",
    "FaceFrameImages",
    "FaceFrameImagesParts",
    "FaceFrameImagesSubassemblies",
    "Prompts",
    "PromptMap",
    "PurchaseOrders",
    "Estimates",
    "Correspondence",
    "EventLogs",
    "Attachment",
)

DEPENDENT_TABLES: tuple[TableSpec, ...] = tuple(
    TableSpec(name, binary_payload=name in _BINARY_TABLES) for name in _COPY_SEQUENCE
)

_BY_NAME = {table.name: table for table in DEPENDENT_TABLES + (ROOT_TABLE,)}


def copy_order() -> tuple[TableSpec, ...]:
    """Dependent tables in the order they are copied."""
    return DEPENDENT_TABLES


def deletion_order() -> tuple[TableSpec, ...]:
    """Tables in the order source rows are deleted: reversed copy order, root last."""
    return tuple(reversed(DEPENDENT_TABLES)) + (ROOT_TABLE,)


def get_table(name: str) -> TableSpec:
    """Look up a registered table by name.

    Raises:
        KeyError: If the table is not part of the registry
    """
    try:
        return _BY_NAME[name]
    except KeyError:
        raise KeyError(f"Unknown project table: {name}") from None

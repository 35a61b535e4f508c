"""
Catalog entity records.

Plain dataclasses mirroring the store tables; the upsert layer accepts these
and the query surface returns them.
"""
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass
class Group:
    id: str
    name: str


@dataclass
class Subgroup:
    id: str
    name: str
    group_id: str
    path: Optional[str] = None


@dataclass
class Diagram:
    id: str
    group_id: str
    subgroup_id: Optional[str]
    name: str
    image_url: Optional[str]
    source_url: str
    image_path: Optional[str] = None


@dataclass
class Part:
    """
    One catalog line item.

    A part whose pnc, description and ref_number are all None is a
    replacement annotation for the part before it, not a real line.
    """
    part_number: str
    diagram_id: str
    group_id: str
    detail_page_id: Optional[str] = None
    subgroup_id: Optional[str] = None
    pnc: Optional[str] = None
    description: Optional[str] = None
    ref_number: Optional[str] = None
    quantity: Optional[int] = None
    spec: Optional[str] = None
    notes: Optional[str] = None
    color: Optional[str] = None
    model_date_range: Optional[str] = None
    replacement_part_number: Optional[str] = None
    id: Optional[int] = None

    def to_params(self) -> Dict[str, Any]:
        params = asdict(self)
        params.pop("id")
        return params

    @classmethod
    def from_row(cls, row) -> "Part":
        return cls(**dict(row._mapping))

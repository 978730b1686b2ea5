"""GAEB DA XML parser for bills of quantities (.x80 - .x84).

A GAEB file is an XML document whose ``Award/BoQ`` element holds the LV:

    BoQInfo/BoQBkdn    breakdown of the ordinal number (levels and lengths)
    BoQBody/BoQCtgy    nested lots/titles, each with an RNoPart
    Itemlist/Item      positions: RNoPart, Qty, QU, UP, IT, Description

The exchange phase (DP) decides which fields are meaningful: quantity-only
phases (80, 81, 83) never carry prices, priced phases (82, 84) carry unit
prices and item totals. Prices present in an unpriced phase are ignored.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from priceintel.errors import ExtractionError


@dataclass(frozen=True, slots=True)
class GaebPhase:
    code: str
    label: str
    priced: bool


PHASES: dict[str, GaebPhase] = {
    "80": GaebPhase("80", "Leistungsverzeichnis", priced=False),
    "81": GaebPhase("81", "Leistungsbeschreibung", priced=False),
    "82": GaebPhase("82", "Kostenanschlag", priced=True),
    "83": GaebPhase("83", "Angebotsaufforderung", priced=False),
    "84": GaebPhase("84", "Angebotsabgabe", priced=True),
}

SHORT_TEXT_LIMIT = 200

_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True)
class GaebPosition:
    code: str
    short_text: str
    long_text: str = ""
    quantity: Decimal | None = None
    unit: str | None = None
    unit_price: Decimal | None = None
    total_price: Decimal | None = None
    category: str | None = None


@dataclass
class GaebDocument:
    phase: GaebPhase
    project_name: str | None = None
    boq_name: str | None = None
    currency: str | None = None
    positions: list[GaebPosition] = field(default_factory=list)

    def render_text(self) -> str:
        """Render the LV as tab-separated text for downstream analysis."""
        lines = [f"GAEB DA XML X{self.phase.code} ({self.phase.label})"]
        if self.project_name:
            lines.append(f"Projekt: {self.project_name}")
        if self.boq_name:
            lines.append(f"LV: {self.boq_name}")
        if self.currency:
            lines.append(f"Währung: {self.currency}")
        lines.append("")
        lines.append("OZ\tKurztext\tMenge\tEinheit\tEP\tGP\tTitel")

        for pos in self.positions:
            lines.append(
                "\t".join(
                    [
                        pos.code,
                        pos.short_text,
                        _fmt(pos.quantity),
                        pos.unit or "",
                        _fmt(pos.unit_price),
                        _fmt(pos.total_price),
                        pos.category or "",
                    ]
                )
            )
            if pos.long_text and pos.long_text != pos.short_text:
                lines.append(f"\t{pos.long_text}")
        return "\n".join(lines)


def phase_for_extension(extension: str) -> GaebPhase:
    """Map a file extension like '.x84' to its GAEB phase.

    Raises:
        ExtractionError: If the extension is not a supported GAEB variant
    """
    code = extension.lower().lstrip(".").lstrip("x")
    try:
        return PHASES[code]
    except KeyError:
        raise ExtractionError(f"Unsupported GAEB variant: {extension!r}") from None


def parse_gaeb(content: bytes, extension: str) -> GaebDocument:
    """Parse GAEB DA XML bytes according to the grammar of its phase.

    The DP element inside the document wins over the file extension.

    Raises:
        ExtractionError: If the content is not a well-formed GAEB DA XML LV
    """
    phase = phase_for_extension(extension)

    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise ExtractionError(f"Not a GAEB DA XML document: {exc}") from exc

    if _local(root.tag) != "GAEB":
        raise ExtractionError(f"Unexpected root element <{_local(root.tag)}>, expected <GAEB>")

    award = _child(root, "Award")
    if award is None:
        raise ExtractionError("GAEB document has no <Award> section")

    dp = _text(_child(award, "DP"))
    if dp:
        if dp not in PHASES:
            raise ExtractionError(f"Unsupported GAEB exchange phase DP={dp}")
        phase = PHASES[dp]

    boq = _child(award, "BoQ")
    if boq is None:
        raise ExtractionError("GAEB document has no <BoQ> (bill of quantities)")

    prj_info = _child(root, "PrjInfo")
    document = GaebDocument(
        phase=phase,
        project_name=_text(_child(prj_info, "NamePrj")) or _text(_child(prj_info, "LblPrj")),
        currency=_text(_child(prj_info, "Cur")) or _text(_child(_child(award, "AwardInfo"), "Cur")),
    )

    boq_info = _child(boq, "BoQInfo")
    document.boq_name = _text(_child(boq_info, "Name")) or _text(_child(boq_info, "LblTx"))
    lengths = _breakdown_lengths(boq_info)

    body = _child(boq, "BoQBody")
    if body is None:
        raise ExtractionError("GAEB <BoQ> has no <BoQBody>")

    _walk_body(body, [], None, lengths, phase, document.positions)
    return document


def _breakdown_lengths(boq_info: ET.Element | None) -> list[int]:
    """Lengths of the ordinal number segments, levels first, item last."""
    lengths: list[int] = []
    if boq_info is None:
        return lengths
    for bkdn in _children(boq_info, "BoQBkdn"):
        if _text(_child(bkdn, "Type")) == "Index":
            continue
        try:
            lengths.append(int(_text(_child(bkdn, "Length")) or 0))
        except ValueError:
            lengths.append(0)
    return lengths


def _walk_body(
    body: ET.Element,
    prefix: list[str],
    category: str | None,
    lengths: list[int],
    phase: GaebPhase,
    out: list[GaebPosition],
) -> None:
    for ctgy in _children(body, "BoQCtgy"):
        part = _pad(ctgy.get("RNoPart", ""), lengths, len(prefix))
        label_el = _child(ctgy, "LblTx")
        label = _collapse(" ".join(label_el.itertext())) if label_el is not None else None
        inner = _child(ctgy, "BoQBody")
        if inner is not None:
            _walk_body(inner, prefix + [part], label or category, lengths, phase, out)

    for itemlist in _children(body, "Itemlist"):
        for item in _children(itemlist, "Item"):
            out.append(_parse_item(item, prefix, category, lengths, phase))


def _parse_item(
    item: ET.Element,
    prefix: list[str],
    category: str | None,
    lengths: list[int],
    phase: GaebPhase,
) -> GaebPosition:
    part = _pad(item.get("RNoPart", ""), lengths, len(lengths) - 1 if lengths else len(prefix))
    code = ".".join(p for p in prefix + [part] if p)

    short_text, long_text = _item_texts(item)
    quantity = _decimal(_text(_child(item, "Qty")))
    unit = _text(_child(item, "QU"))

    if _text(_child(item, "LumpSumItem")).lower() in ("yes", "true", "1"):
        quantity = quantity or Decimal("1")
        unit = unit or "psch"

    unit_price = total_price = None
    if phase.priced:
        unit_price = _decimal(_text(_child(item, "UP")))
        total_price = _decimal(_text(_child(item, "IT")))
        if total_price is None and unit_price is not None and quantity is not None:
            total_price = quantity * unit_price

    return GaebPosition(
        code=code,
        short_text=short_text,
        long_text=long_text,
        quantity=quantity,
        unit=unit or None,
        unit_price=unit_price,
        total_price=total_price,
        category=category,
    )


def _item_texts(item: ET.Element) -> tuple[str, str]:
    description = _child(item, "Description")
    if description is None:
        return "", ""
    complete = _child(description, "CompleteText")
    container = complete if complete is not None else description

    outline = _child(container, "OutlineText")
    detail = _child(container, "DetailTxt")

    long_text = _collapse(" ".join(detail.itertext())) if detail is not None else ""
    short_text = _collapse(" ".join(outline.itertext())) if outline is not None else ""
    if not short_text:
        short_text = long_text[:SHORT_TEXT_LIMIT]
    return short_text, long_text


def _pad(part: str, lengths: list[int], level: int) -> str:
    part = part.strip()
    if part.isdigit() and 0 <= level < len(lengths) and lengths[level]:
        return part.zfill(lengths[level])
    return part


def _decimal(value: str) -> Decimal | None:
    if not value:
        return None
    try:
        return Decimal(value.replace(",", "."))
    except InvalidOperation:
        return None


def _fmt(value: Decimal | None) -> str:
    if value is None:
        return ""
    return f"{value.normalize():f}"


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element | None, name: str) -> ET.Element | None:
    if element is None:
        return None
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


def _children(element: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in element if _local(child.tag) == name]


def _text(element: ET.Element | None) -> str:
    if element is None or element.text is None:
        return ""
    return element.text.strip()


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()

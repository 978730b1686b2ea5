"""Prompt construction for offer reconstruction and request assessment."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class Prompt:
    system: str
    user: str


RECONSTRUCTION_SYSTEM = """Du bist ein Kalkulationsexperte für deutsche Handwerksbetriebe.
Du digitalisierst abgeschlossene Angebote und Leistungsverzeichnisse für eine Preisdatenbank.

Regeln:
- Übernimm jede Position mit Positionsnummer, Beschreibung, Menge, Einheit und Einzelpreis.
- Kategorisiere jede Position als labor (Arbeit), material, equipment (Gerät) oder other.
- Ordne jede Position einer Handwerkssparte (Elektrik, Sanitär, Heizung, Bau, Maler, ...) und einem Arbeitstyp zu.
- Setze confidence niedrig (< 0.7), wenn Preis oder Menge nicht eindeutig lesbar sind.
- Erfinde keine Positionen und keine Preise. Fehlende Preise sind 0.
- Datumsangaben im Format YYYY-MM-DD."""

ASSESSMENT_SYSTEM = """Du bist ein erfahrener Bauexperte und Kalkulationsspezialist für deutsche Handwerksbetriebe.
Du bewertest Kundenanfragen und schlägst Angebotspositionen vor.

Kontext:
- Preise sollen marktüblich für Deutschland sein.
- Berücksichtige deutsche Baustandards und Vorschriften.
- Komplexität: low (Standardarbeiten), medium (mehrere Gewerke), high (komplexe Koordination).
- Risikofaktoren: Altbau, Denkmalschutz, schwierige Zugänglichkeit, etc.
- Verwende deutsche Positionscodes (01.001, 02.001, ...) und denke an Nebenleistungen (Gerüst, Entsorgung)."""


def reconstruction_prompt(text: str, filename: str | None = None) -> Prompt:
    header = f"DATEI: {filename}\n" if filename else ""
    user = (
        "Analysiere das folgende Angebot und extrahiere strukturierte Daten.\n\n"
        f"{header}INHALT:\n{text}"
    )
    return Prompt(system=RECONSTRUCTION_SYSTEM, user=user)


def assessment_prompt(
    message: str,
    documents: Sequence[str] = (),
    budget: str | None = None,
    timeline: str | None = None,
    urgency: str | None = None,
) -> Prompt:
    parts = [f"KUNDENANFRAGE:\n{message.strip()}"]

    context = []
    if budget:
        context.append(f"- Budget: {budget}")
    if timeline:
        context.append(f"- Zeitrahmen: {timeline}")
    if urgency:
        context.append(f"- Dringlichkeit laut Kunde: {urgency}")
    if context:
        parts.append("RAHMENBEDINGUNGEN:\n" + "\n".join(context))

    for i, document in enumerate(documents, 1):
        parts.append(f"DOKUMENT {i}:\n{document}")

    parts.append("Erstelle eine professionelle Projektbewertung mit konkreten Empfehlungen.")
    return Prompt(system=ASSESSMENT_SYSTEM, user="\n\n".join(parts))

"""
Part Tag Classifier

Derives browse tags for parts from their description (and, for vehicle-system
tags, from the group id). Tags are a derived index: regenerate_tags() wipes
and rebuilds them from the parts table at any time.

Four categories:
- system:      vehicle system (engine, brakes, hvac, ...)
- component:   kind of part (gasket, bearing, fastener, ...)
- maintenance: routinely replaced / wear items
- position:    front/rear, left/right, upper/lower, inner/outer
"""
import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Set, Tuple

from sqlalchemy import text

from config import Config
from db.sql import execute_sql, run_sql

logger = logging.getLogger(__name__)

SYSTEM = "system"
COMPONENT = "component"
MAINTENANCE = "maintenance"
POSITION = "position"

_INSERT_ASSIGNMENT = text(
    "INSERT OR IGNORE INTO tags_to_parts (tag_id, part_id) VALUES (:tag_id, :part_id)"
)

# =============================================================================
# RULE TABLE
# =============================================================================
# tag id -> (category, patterns). Patterns are matched case-insensitively.

TAG_RULES: Dict[str, Tuple[str, List[str]]] = {
    # System
    "engine": (SYSTEM, [r"^engine$"]),
    "transmission": (SYSTEM, [r"^automatic-transmission$", r"^transfer$", r"A/T", r"M/T", r"TRANS"]),
    "brakes": (SYSTEM, [r"^brake$", r"BRAKE"]),
    "suspension": (SYSTEM, [r"suspension$", r"SHOCK", r"STRUT", r"SPRING,.*COIL"]),
    "steering": (SYSTEM, [r"^steering$", r"STEERING", r"POWER STEER"]),
    "electrical": (SYSTEM, [r"electrical$", r"WIRING", r"HARNESS", r"RELAY", r"FUSE"]),
    "cooling": (SYSTEM, [r"^cooling$", r"RADIATOR", r"COOLANT", r"THERMOSTAT", r"WATER PUMP"]),
    "fuel-system": (SYSTEM, [r"^fuel$", r"FUEL", r"INJECTOR", r"CARBURETOR"]),
    "exhaust": (SYSTEM, [r"EXHAUST", r"MUFFLER", r"CATALYTIC", r"MANIFOLD,.*EXH"]),
    "intake": (SYSTEM, [r"INTAKE", r"AIR CLEANER", r"THROTTLE", r"MANIFOLD,.*INT"]),
    "hvac": (SYSTEM, [
        r"heater", r"A/C", r"ventilation", r"BLOWER", r"EVAPORATOR", r"CONDENSER",
        r"COMPRESSOR,.*A/C",
    ]),
    "drivetrain": (SYSTEM, [
        r"axle$", r"DIFFERENTIAL", r"PROPELLER", r"DRIVE SHAFT", r"CV JOINT", r"TRANSFER",
    ]),
    "body": (SYSTEM, [r"^body$", r"^door$", r"^interior$", r"^exterior$", r"^seat$"]),
    "wheels-tires": (SYSTEM, [r"^wheel", r"TIRE", r"HUB", r"LUG NUT"]),
    "lighting": (SYSTEM, [r"HEADL", r"TAIL.*L", r"LAMP", r"LIGHT", r"BULB", r"TURN SIGNAL"]),
    "lubrication": (SYSTEM, [r"^lubrication$", r"OIL PUMP", r"OIL PAN", r"OIL FILTER"]),

    # Component
    "gasket": (COMPONENT, [r"GASKET"]),
    "seal": (COMPONENT, [r"\bSEAL\b", r"O-RING"]),
    "bearing": (COMPONENT, [r"BEARING"]),
    "bushing": (COMPONENT, [r"BUSHING"]),
    "filter": (COMPONENT, [r"FILTER"]),
    "belt": (COMPONENT, [r"\bBELT\b"]),
    "hose": (COMPONENT, [r"\bHOSE\b"]),
    "pump": (COMPONENT, [r"\bPUMP\b"]),
    "sensor": (COMPONENT, [r"SENSOR", r"SENDER"]),
    "switch": (COMPONENT, [r"SWITCH"]),
    "valve": (COMPONENT, [r"\bVALVE\b", r"\bPCV\b", r"\bEGR\b"]),
    "motor": (COMPONENT, [r"\bMOTOR\b", r"ACTUATOR"]),
    "spring": (COMPONENT, [r"\bSPRING\b"]),
    "mount": (COMPONENT, [r"\bMOUNT\b", r"MOUNTING", r"BRACKET", r"INSULATOR"]),
    "fastener": (COMPONENT, [
        r"\bBOLT\b", r"\bNUT\b", r"\bSCREW\b", r"\bSTUD\b", r"\bWASHER\b", r"\bCLIP\b", r"\bCLAMP\b",
    ]),
    "cover": (COMPONENT, [r"\bCOVER\b", r"\bCAP\b", r"\bLID\b"]),
    "cable": (COMPONENT, [r"\bCABLE\b", r"\bWIRE\b"]),
    "piston": (COMPONENT, [r"\bPISTON\b", r"\bRING,.*PISTON"]),
    "clutch": (COMPONENT, [r"\bCLUTCH\b"]),
    "rotor-drum": (COMPONENT, [r"\bROTOR\b", r"\bDRUM\b", r"\bDISC\b"]),
    "pad-shoe": (COMPONENT, [r"\bPAD\b", r"\bSHOE\b", r"\bLINING\b"]),
    "caliper": (COMPONENT, [r"CALIPER"]),
    "cylinder": (COMPONENT, [r"CYLINDER"]),
    "gear": (COMPONENT, [r"\bGEAR\b", r"PINION", r"SPROCKET"]),
    "shaft": (COMPONENT, [r"\bSHAFT\b", r"AXLE SHAFT"]),
    "linkage": (COMPONENT, [r"LINKAGE", r"\bROD\b", r"\bARM\b", r"TIE ROD", r"BALL JOINT"]),
    "mirror": (COMPONENT, [r"MIRROR"]),
    "glass": (COMPONENT, [r"\bGLASS\b", r"WINDSHIELD", r"WINDOW"]),
    "weather-strip": (COMPONENT, [r"WEATHER\s*STRIP", r"MOLDING", r"TRIM"]),
    "handle": (COMPONENT, [r"HANDLE", r"KNOB", r"LEVER"]),
    "latch-lock": (COMPONENT, [r"LATCH", r"\bLOCK\b", r"STRIKER"]),
    "wiper": (COMPONENT, [r"WIPER"]),
    "spark-plug": (COMPONENT, [r"SPARK PLUG", r"IGNITION", r"COIL,.*IGN", r"DISTRIBUTOR"]),
    "starter-alternator": (COMPONENT, [r"STARTER", r"ALTERNATOR", r"GENERATOR"]),
    "battery": (COMPONENT, [r"BATTERY"]),

    # Maintenance
    "maintenance-item": (MAINTENANCE, [
        r"FILTER", r"\bBELT\b", r"SPARK PLUG", r"\bPAD\b", r"\bSHOE\b", r"WIPER.*BLADE", r"FLUID",
    ]),
    "wear-part": (MAINTENANCE, [
        r"BEARING", r"BUSHING", r"\bSEAL\b", r"GASKET", r"O-RING", r"\bPAD\b", r"\bSHOE\b",
        r"LINING", r"CLUTCH.*DISC",
    ]),

    # Position
    "front": (POSITION, [r"\bFRONT\b", r"\bFR\b", r"\bFWD\b"]),
    "rear": (POSITION, [r"\bREAR\b", r"\bRR\b", r"\bBACK\b"]),
    "left": (POSITION, [r"\bLEFT\b", r"\bLH\b", r",LH$"]),
    "right": (POSITION, [r"\bRIGHT\b", r"\bRH\b", r",RH$"]),
    "upper": (POSITION, [r"\bUPPER\b", r"\bUPR\b", r"\bTOP\b"]),
    "lower": (POSITION, [r"\bLOWER\b", r"\bLWR\b", r"\bBOTTOM\b"]),
    "inner": (POSITION, [r"\bINNER\b", r"\bINR\b"]),
    "outer": (POSITION, [r"\bOUTER\b", r"\bOTR\b"]),
}


@dataclass(frozen=True)
class TagRule:
    tag_id: str
    category: str
    patterns: Tuple[Pattern, ...]

    @property
    def name(self) -> str:
        """Display name: "wheels-tires" -> "Wheels Tires"."""
        return self.tag_id.replace("-", " ").title()

    def matches(self, description: str, group_id: str) -> bool:
        for pattern in self.patterns:
            if pattern.search(description):
                return True
            if self.category == SYSTEM and pattern.search(group_id):
                return True
        return False


RULES: Tuple[TagRule, ...] = tuple(
    TagRule(
        tag_id=tag_id,
        category=category,
        patterns=tuple(re.compile(p, re.IGNORECASE) for p in patterns),
    )
    for tag_id, (category, patterns) in TAG_RULES.items()
)


def classify(description: Optional[str], group_id: Optional[str]) -> Set[str]:
    """
    Tag ids that apply to a part.

    Every rule is checked against the description; system rules are also
    checked against the group id, so all parts of the "engine" group get
    the "engine" tag regardless of their description.
    """
    description = description or ""
    group_id = group_id or ""
    return {rule.tag_id for rule in RULES if rule.matches(description, group_id)}


def regenerate_tags(session, batch_size: int = Config.TAG_BATCH_SIZE) -> Dict[str, int]:
    """
    Rebuild tags and tag assignments from scratch.

    Returns:
        Tag id -> number of parts tagged with it (tags with no parts omitted).
    """
    execute_sql(session, "DELETE FROM tags_to_parts")
    execute_sql(session, "DELETE FROM tags")
    for rule in RULES:
        execute_sql(
            session,
            "INSERT INTO tags (id, name, category) VALUES (:id, :name, :category)",
            id=rule.tag_id, name=rule.name, category=rule.category,
        )

    parts = run_sql(session, "SELECT id, description, group_id FROM parts ORDER BY id")
    logger.info(f"Classifying {len(parts)} parts against {len(RULES)} tags...")

    counts: Counter = Counter()
    assignments: List[Dict[str, object]] = []
    for part_id, description, group_id in parts:
        for tag_id in sorted(classify(description, group_id)):
            assignments.append({"tag_id": tag_id, "part_id": part_id})
            counts[tag_id] += 1

    for start in range(0, len(assignments), batch_size):
        batch = assignments[start:start + batch_size]
        session.execute(_INSERT_ASSIGNMENT, batch)
    session.commit()

    logger.info(f"Inserted {len(assignments)} tag assignments")
    for tag_id, count in counts.most_common(20):
        logger.info(f"  {tag_id}: {count} parts")
    if len(counts) > 20:
        logger.info(f"  ... and {len(counts) - 20} more tags")
    return dict(counts)

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from khokho.errors import ValidationError


class Symbol(StrEnum):
    simple_touch = "simple-touch"
    sudden_attack = "sudden-attack"
    pole_dive = "pole-dive"
    tap = "tap"
    dive = "dive"
    turn_closure = "turn-closure"
    late_entry = "late-entry"
    out_of_field = "out-of-field"
    retired = "retired"
    warning = "warning"
    yellow_card = "yellow-card"
    red_card = "red-card"
    substitution = "substitution"


@dataclass(frozen=True, slots=True)
class SymbolSpec:
    symbol: Symbol
    name: str
    abbr: str
    points: int
    single_player: bool = False
    requires_confirmation: bool = False


SYMBOL_SPECS: dict[Symbol, SymbolSpec] = {
    Symbol.simple_touch: SymbolSpec(Symbol.simple_touch, "Simple Touch", "S", 1),
    Symbol.sudden_attack: SymbolSpec(Symbol.sudden_attack, "Sudden Attack", "SA", 1),
    Symbol.pole_dive: SymbolSpec(Symbol.pole_dive, "Pole Dive", "P", 1),
    Symbol.tap: SymbolSpec(Symbol.tap, "Tap", "T", 1),
    Symbol.dive: SymbolSpec(Symbol.dive, "Dive", "D", 1),
    Symbol.turn_closure: SymbolSpec(Symbol.turn_closure, "Turn Closure", "][", 0),
    Symbol.late_entry: SymbolSpec(Symbol.late_entry, "Late Entry", "L", 1),
    Symbol.out_of_field: SymbolSpec(Symbol.out_of_field, "Out of Field", "O", 1, single_player=True),
    Symbol.retired: SymbolSpec(Symbol.retired, "Retired", "R", 0),
    Symbol.warning: SymbolSpec(Symbol.warning, "Warning", "W", 0, single_player=True),
    Symbol.yellow_card: SymbolSpec(
        Symbol.yellow_card, "Yellow Card", "Y", 0, single_player=True, requires_confirmation=True
    ),
    Symbol.red_card: SymbolSpec(Symbol.red_card, "Red Card", "F", 0, single_player=True, requires_confirmation=True),
    Symbol.substitution: SymbolSpec(Symbol.substitution, "Substitution", "SUB", 0),
}


def symbol_spec(symbol: Symbol | str) -> SymbolSpec:
    try:
        sym = Symbol(symbol) if not isinstance(symbol, Symbol) else symbol
    except ValueError as e:
        raise ValidationError(f"Unknown symbol: {symbol}") from e
    return SYMBOL_SPECS[sym]


def scoring_spec(symbol: Symbol | str) -> SymbolSpec:
    """Spec for a symbol an operator may record (substitution is audit-only)."""

    spec = symbol_spec(symbol)
    if spec.symbol == Symbol.substitution:
        raise ValidationError("Substitutions are recorded through the substitute operation")
    return spec

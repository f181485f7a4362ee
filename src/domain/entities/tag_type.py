"""Tag type enumeration."""

from enum import StrEnum


class TagType(StrEnum):
    """Kinds of physical tag.

    Every member carries its own display metadata, so a new type cannot be
    added without deciding how it is shown and whether the system may
    reserve it automatically.
    """

    display_name: str
    auto_capable: bool
    holds_items: bool

    def __new__(
        cls, value: str, display_name: str, auto_capable: bool, holds_items: bool = False
    ) -> "TagType":
        member = str.__new__(cls, value)
        member._value_ = value
        member.display_name = display_name
        member.auto_capable = auto_capable
        member.holds_items = holds_items
        return member

    PREP_TAG = ("PrepTag", "Prep Tag", True)
    BUNDLE = ("Bundle", "Bundle", True)
    BASKET = ("Basket", "Basket", True)
    STERILIZATION_LOAD = ("SterilizationLoad", "Sterilization Load", True)
    WASH = ("Wash", "Wash", True)
    TRANSPORT = ("Transport", "Transport", True)
    CASE_CART = ("CaseCart", "Case Cart", False)
    TRANSPORT_BOX = ("TransportBox", "Transport Box", True)
    INSTRUMENT_CONTAINER = ("InstrumentContainer", "Instrument Container", False, True)

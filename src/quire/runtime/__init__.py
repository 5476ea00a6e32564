"""Objects visible to compiled templates at render time."""

from quire.runtime.attributes import AttributesBag, class_list, split_props
from quire.runtime.loop import LoopFrame
from quire.runtime.slots import ComponentSlot

__all__ = ["AttributesBag", "ComponentSlot", "LoopFrame", "class_list", "split_props"]

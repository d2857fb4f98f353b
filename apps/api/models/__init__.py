"""Models package."""

from .user import User
from .category import Category, item_categories
from .tag import Tag, item_tags
from .catalog_item import CatalogItem
from .catalog_image import CatalogImage
from .interaction_event import InteractionEvent
from .item_reaction import ItemReaction
from .search_analytic import SearchAnalytic

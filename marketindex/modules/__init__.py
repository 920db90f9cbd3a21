"""
Modules package initialization.
Each functional module keeps its own models, schemas, services and api router.
"""

from marketindex.modules import auth
from marketindex.modules import user_management
from marketindex.modules import relationships
from marketindex.modules import content
from marketindex.modules import media
from marketindex.modules import groups
from marketindex.modules import notifications
from marketindex.modules import cleanup

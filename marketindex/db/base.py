# Import all models here so metadata.create_all can see them
from marketindex.db.session import Base

# Import all models below
from marketindex.modules.user_management.models.user import User, UsernameReservation
from marketindex.modules.relationships.models.relationship import Relationship
from marketindex.modules.content.models.content_item import ContentItem
from marketindex.modules.content.models.broadcast import Broadcast, BroadcastRecipient
from marketindex.modules.groups.models.group import Group, GroupMember, GroupMessage
from marketindex.modules.notifications.models.notification import Notification
from marketindex.modules.cleanup.models.cleanup_job import CleanupJob

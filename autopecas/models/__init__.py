from autopecas.models.user import User
from autopecas.models.product import Product
from autopecas.models.conversation import Conversation
from autopecas.models.message import Message
from autopecas.models.order import Order
from autopecas.models.bot_settings import BotSettings
from autopecas.models.ai_config import AIConfig
from autopecas.models.ai_message_log import AIMessageLog
from autopecas.models.audit_log import AuditLog
from autopecas.models.login_attempt import LoginAttempt
from autopecas.models.whatsapp_config import WhatsAppConfig

# Overview: Flask extension instances for database, migrations, payment gateway and notifications.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.gateway_client import PaymentGateway
from .services.notification_service import LoggingNotifier

db = SQLAlchemy()
migrate = Migrate()
gateway = PaymentGateway()
notifier = LoggingNotifier()

"""
Client onboarding and lifecycle

Registering a client checks GA4 access before anything is written, so a
property the credential cannot read never enters the roster.
"""
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError

from app.config import Settings, get_settings
from app.connectors.ga4_connector import GA4Connector
from app.models.base import SessionLocal
from app.models.client import Client
from app.services.errors import ClientNotFoundError, PropertyAccessError, PropertyAlreadyRegisteredError
from app.services.metrics_store import ClientRef
from app.utils.logger import log


class ClientService:
    """Create, list, deactivate and delete tracked clients"""

    def __init__(self, connector: GA4Connector, session_factory=None, settings: Optional[Settings] = None):
        self.connector = connector
        self.session_factory = session_factory or SessionLocal
        self.settings = settings or get_settings()

    async def register_client(self, name: str, property_id: str, timezone: str = "UTC") -> ClientRef:
        """
        Validate GA4 access, then create an active client.

        Raises ValueError for bad input, PropertyAccessError when the
        credential lacks access and PropertyAlreadyRegisteredError for a
        duplicate property.
        """
        name = (name or "").strip()
        property_id = str(property_id or "").strip()
        if not name:
            raise ValueError("Client name is required")
        if not property_id.isdigit():
            raise ValueError(f"Invalid GA4 property ID '{property_id}': expected a numeric string")
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone '{timezone}'")

        if self._find_by_property(property_id):
            raise PropertyAlreadyRegisteredError(property_id)

        log.info(f"Validating GA4 access for property {property_id}")
        if not await self.connector.validate_property_access(property_id):
            principal = self.connector.credentials.principal if self.connector.credentials else None
            raise PropertyAccessError(property_id, principal)

        db = self.session_factory()
        try:
            client = Client(name=name, ga_property_id=property_id, timezone=timezone, is_active=True)
            db.add(client)
            db.commit()
            db.refresh(client)
            ref = ClientRef.from_model(client)
        except IntegrityError:
            db.rollback()
            raise PropertyAlreadyRegisteredError(property_id)
        finally:
            db.close()

        log.info(f"Client created: {ref.name} ({ref.ga_property_id}) id={ref.id}")
        return ref

    def _find_by_property(self, property_id: str) -> Optional[ClientRef]:
        db = self.session_factory()
        try:
            client = db.query(Client).filter(Client.ga_property_id == property_id).first()
            return ClientRef.from_model(client) if client else None
        finally:
            db.close()

    def list_clients(self, include_inactive: bool = False) -> List[ClientRef]:
        db = self.session_factory()
        try:
            q = db.query(Client)
            if not include_inactive:
                q = q.filter(Client.is_active.is_(True))
            return [ClientRef.from_model(c) for c in q.order_by(Client.name, Client.id).all()]
        finally:
            db.close()

    def initial_backfill_window(self, today: Optional[date] = None) -> Tuple[date, date]:
        """The last N complete days ending yesterday"""
        today = today or datetime.now(ZoneInfo(self.settings.sync_timezone)).date()
        end = today - timedelta(days=1)
        start = today - timedelta(days=self.settings.initial_backfill_days)
        return start, end

    def deactivate_client(self, client_id: int) -> ClientRef:
        """Soft delete: stop syncing but keep history"""
        db = self.session_factory()
        try:
            client = db.get(Client, client_id)
            if client is None:
                raise ClientNotFoundError(client_id)
            client.is_active = False
            db.commit()
            db.refresh(client)
            log.info(f"Client deactivated: {client.name} id={client_id}")
            return ClientRef.from_model(client)
        finally:
            db.close()

    def delete_client(self, client_id: int) -> None:
        """
        Hard delete. Daily metrics go with the client; sync logs stay with
        their client_id cleared.
        """
        db = self.session_factory()
        try:
            client = db.get(Client, client_id)
            if client is None:
                raise ClientNotFoundError(client_id)
            name = client.name
            db.delete(client)
            db.commit()
            log.info(f"Client deleted: {name} id={client_id}")
        except ClientNotFoundError:
            raise
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

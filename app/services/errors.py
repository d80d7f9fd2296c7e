"""
Service-level errors raised by the sync and client services
"""


class ClientNotFoundError(LookupError):
    """No client with the given id"""

    def __init__(self, client_id: int):
        super().__init__(f"Client {client_id} not found")
        self.client_id = client_id


class PropertyAlreadyRegisteredError(ValueError):
    """A client already tracks this GA4 property"""

    def __init__(self, property_id: str):
        super().__init__(f"GA4 property {property_id} is already registered")
        self.property_id = property_id


class PropertyAccessError(PermissionError):
    """The GA4 credential cannot read the property"""

    def __init__(self, property_id: str, principal: str = None):
        who = principal or "the configured GA4 credential"
        super().__init__(
            f"Cannot access GA4 property {property_id}. "
            f'Grant {who} "Viewer" access in GA4 and try again.'
        )
        self.property_id = property_id
        self.principal = principal

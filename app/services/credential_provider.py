"""Shop credential lookup for signed Shopee calls."""

import logging
from dataclasses import dataclass
from sqlalchemy.orm import Session
from cryptography.fernet import InvalidToken

from app.models.shop import Shop
from app.services.encryption_service import EncryptionService
from app.services.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShopCredentials:
    """Decrypted credentials needed to sign calls for one shop."""

    shop_id: int
    partner_id: int
    partner_key: str
    access_token: str

    def __repr__(self) -> str:
        return f"ShopCredentials(shop_id={self.shop_id}, partner_id={self.partner_id})"


class CredentialProvider:
    """Reads and decrypts shop credentials from the shops table."""

    def __init__(self, encryption_service: EncryptionService):
        self.encryption_service = encryption_service

    def get_credentials(self, db: Session, shop_id: int) -> ShopCredentials:
        """Get decrypted credentials for a shop.

        Args:
            db: Database session.
            shop_id: Shopee shop ID.

        Returns:
            ShopCredentials for the shop.

        Raises:
            ConfigurationError: If the shop is unknown, inactive, has no access
                token, or its secrets cannot be decrypted.
        """
        shop = db.query(Shop).filter(Shop.shop_id == shop_id).first()

        if not shop:
            logger.error(f"No credentials stored for shop {shop_id}")
            raise ConfigurationError(f"Shop {shop_id} not found")

        if shop.status != "active":
            raise ConfigurationError(f"Shop {shop_id} is not active")

        if not shop.access_token_encrypted:
            raise ConfigurationError(f"Shop {shop_id} has no access token")

        try:
            partner_key = self.encryption_service.decrypt(shop.partner_key_encrypted)
            access_token = self.encryption_service.decrypt(shop.access_token_encrypted)
        except InvalidToken:
            logger.error(f"Failed to decrypt credentials for shop {shop_id}")
            raise ConfigurationError(f"Credentials for shop {shop_id} cannot be decrypted")

        return ShopCredentials(
            shop_id=shop.shop_id,
            partner_id=shop.partner_id,
            partner_key=partner_key,
            access_token=access_token,
        )

"""Payment gateway: card tokenization and payments across Stripe, Transbank and MercadoPago."""

__version__ = "0.1.0"

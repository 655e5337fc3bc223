"""HTTP surface of the payment gateway."""

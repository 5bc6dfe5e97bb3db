"""OTP-gated authentication and credential lifecycle for the placement portal."""

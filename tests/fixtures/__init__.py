from tests.fixtures.fake_payment import (
    DECLINED_TOKEN,
    SCA_TOKEN,
    FakePaymentProvider,
)

__all__ = ["DECLINED_TOKEN", "SCA_TOKEN", "FakePaymentProvider"]

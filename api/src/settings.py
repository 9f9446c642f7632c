from decimal import Decimal
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='kommo_pay_', frozen=True)

    # Адрес, по которому сервис доступен снаружи, из него строится server_callback_url
    public_url: str = Field(default='http://127.0.0.1:8000')
    webhooks_dir: Path = Field(default=Path('webhooks'))
    currency: str = Field(default='GEL')

    field_write_attempts: int = Field(default=2)
    field_write_retry_delay: float = Field(default=5.0)
    note_attempts: int = Field(default=2)
    note_retry_delay: float = Field(default=5.0)

    @property
    def callback_url(self) -> str:
        return f'{self.public_url.rstrip("/")}/payment-callback'


class DealFieldsSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='kommo_pay_fields_', frozen=True)

    # total = price + fee + (units * unit_price) * tax_multiplier
    fee_field_id: int = Field(default=985221)
    units_field_id: int = Field(default=888918)
    unit_price_field_id: int = Field(default=985181)
    tax_multiplier: Decimal = Field(default=Decimal('1.18'))

    payment_id_field_id: int = Field(default=980726)
    company_name_field_ids: tuple[int, ...] = Field(default=(985223, 985225))

    won_status_id: int = Field(default=142)


class KommoSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='kommo_pay_kommo_')

    subdomain: str | None = Field(default=None)
    token: str | None = Field(default=None)
    connection_timeout_sec: float = 30.0

    @property
    def configured(self) -> bool:
        return bool(self.subdomain and self.token)

    @property
    def base_url(self) -> str:
        return f'https://{self.subdomain}.kommo.com/api/v4'


class FlittSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='kommo_pay_flitt_')

    merchant_id: str | None = Field(default=None)
    secret_key: str | None = Field(default=None)
    base_url: str = Field(default='https://pay.flitt.com/api')
    version: str = Field(default='1.0')
    connection_timeout_sec: float = 60.0

    @property
    def configured(self) -> bool:
        return bool(self.merchant_id and self.secret_key)


class PostgresSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='kommo_pay_postgres_')

    host: str = Field(default='127.0.0.1')
    port: int = Field(default=5432)
    user: str
    password: str
    db: str

    def get_url(self, driver: str | None, db: str | None = None):
        scheme = f'postgresql{f"+{driver}" if driver else ""}'
        return f'{scheme}://{self.user}:{self.password}@{self.host}:{self.port}/{db or self.db}'


settings = Settings()
deal_fields_settings = DealFieldsSettings()
kommo_settings = KommoSettings()
flitt_settings = FlittSettings()
pg_settings = PostgresSettings()  # type: ignore

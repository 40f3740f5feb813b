import asyncio
import os
import sys
import uuid
from datetime import timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

# конфіг читається при імпорті app: тестові значення до імпорту
os.environ.setdefault("POSTGRES_USER", "test")
os.environ.setdefault("POSTGRES_PASSWORD", "test")
os.environ.setdefault("POSTGRES_DB", "test")
os.environ.setdefault("POSTGRES_HOST", "localhost")
os.environ.setdefault("POSTGRES_PORT", "5432")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("APP_URL", "http://localhost:3000")
os.environ.setdefault("DODO_PAYMENTS_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("DODO_CREATOR_MONTHLY_PRODUCT_ID", "prod_creator_monthly")
os.environ.setdefault("DODO_PROFESSIONAL_MONTHLY_PRODUCT_ID", "prod_professional_monthly")
os.environ.setdefault("DODO_DAY_PASS_DAILY_PRODUCT_ID", "prod_day_pass")
os.environ.setdefault("DODO_CREDITS_STARTER_PRODUCT_ID", "prod_credits_starter")
os.environ.setdefault("LOG_DIR", str(Path(__file__).parent.parent / "logs"))

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
	create_async_engine, AsyncSession, async_sessionmaker
)
from sqlalchemy.pool import StaticPool

from app.main import app
from app.core.database import Base
from app.core.dependencies import (
	get_session, get_dodo_client, get_checkout_store, get_provider_registry
)
from app.models import AuthSession, Subscription, User
from app.utils.common import utcnow
from app.utils.dodo_client import DodoAPIError
from app.utils.providers import ProviderRegistry, ProviderStatus


# **************    Fakes
class FakeDodoClient:
	"""In-memory Dodo: словники об'єктів + журнал викликів."""

	def __init__(self):
		self.subscriptions = {}
		self.payments = {}
		self.checkouts = {}
		self.subscription_payments = {}
		self.customer_payments = {}
		self.errors = {}
		self.delay = 0
		self.calls = []

	async def _call(self, name, *args):
		self.calls.append((name, *args))
		if self.delay:
			await asyncio.sleep(self.delay)
		if name in self.errors:
			raise self.errors[name]

	async def create_checkout_session(self, payload):
		await self._call("create_checkout_session", payload)
		session_id = f"cks_{len(self.checkouts) + 1}"
		self.checkouts[session_id] = {"session_id": session_id}
		return {
			"session_id": session_id,
			"checkout_url": f"https://test.checkout.dodopayments.com/session/{session_id}",
		}

	async def get_checkout_session(self, session_id):
		await self._call("get_checkout_session", session_id)
		if session_id not in self.checkouts:
			raise DodoAPIError(404, "Checkout session not found")
		return self.checkouts[session_id]

	async def create_payment(self, payload):
		await self._call("create_payment", payload)
		payment_id = f"pay_new_{len(self.calls)}"
		return {"payment_id": payment_id, "payment_link": f"https://test.checkout.dodopayments.com/{payment_id}"}

	async def get_payment(self, payment_id):
		await self._call("get_payment", payment_id)
		if payment_id not in self.payments:
			raise DodoAPIError(404, "Payment not found")
		return self.payments[payment_id]

	async def list_payments(self, subscription_id, page_size=10):
		await self._call("list_payments", subscription_id)
		return self.subscription_payments.get(subscription_id, [])[:page_size]

	async def list_customer_payments(self, customer_id, page_size=10):
		await self._call("list_customer_payments", customer_id)
		return self.customer_payments.get(customer_id, [])[:page_size]

	async def get_subscription(self, subscription_id):
		await self._call("get_subscription", subscription_id)
		if subscription_id not in self.subscriptions:
			raise DodoAPIError(404, "Subscription not found")
		return self.subscriptions[subscription_id]

	async def update_subscription(self, subscription_id, payload):
		await self._call("update_subscription", subscription_id, payload)
		self.subscriptions.setdefault(subscription_id, {}).update(payload)
		return self.subscriptions[subscription_id]

	async def change_plan(self, subscription_id, product_id, proration_billing_mode="difference_immediately"):
		await self._call("change_plan", subscription_id, product_id, proration_billing_mode)
		return {}


class FakeCheckoutStore:
	def __init__(self):
		self.mappings = {}

	async def store(self, session_id, mapping):
		self.mappings[session_id] = dict(mapping)
		return True

	async def get(self, session_id):
		return self.mappings.get(session_id)

	async def mark_completed(self, session_id):
		if session_id not in self.mappings:
			return False
		self.mappings[session_id]["completed"] = True
		return True


class FakeProvider:
	def __init__(self, name):
		self.name = name
		self.submitted = []
		self.status = ProviderStatus(status="processing", progress=10)
		self.submit_error = None
		self.status_error = None

	async def submit(self, model, image_url, prompt, settings):
		if self.submit_error:
			raise self.submit_error
		self.submitted.append((model.id, image_url, prompt, settings))
		return f"{self.name}_job_{len(self.submitted)}"

	async def get_status(self, job_id):
		if self.status_error:
			raise self.status_error
		return self.status


def vendor_subscription(subscription_id, user, plan="creator", billing_period="monthly",
						status="active", days_ahead=30, **extra):
	"""Об'єкт підписки у форматі Dodo."""
	data = {
		"subscription_id": subscription_id,
		"status": status,
		"next_billing_date": (utcnow() + timedelta(days=days_ahead)).isoformat(),
		"customer": {"customer_id": "cus_1", "email": user.email, "name": user.name},
		"metadata": {"userId": user.id, "plan": plan, "billingPeriod": billing_period},
		"currency": "USD",
		"recurring_pre_tax_amount": 2500,
		"cancel_at_next_billing_date": False,
	}
	data.update(extra)
	return data


# **************    Fixtures
# Override get_session для кожного тесту окремо
@pytest_asyncio.fixture
async def db():
	# окрема in-memory база для КОЖНОГО тесту
	engine = create_async_engine(
		"sqlite+aiosqlite://",
		poolclass=StaticPool,
		connect_args={"check_same_thread": False},
	)
	async with engine.begin() as conn:
		await conn.run_sync(Base.metadata.create_all)

	SessionLocal = async_sessionmaker(
		engine,
		class_=AsyncSession,
		expire_on_commit=False,
	)

	async def get_test_db():
		async with SessionLocal() as session:
			yield session

	# Override на час тесту
	app.dependency_overrides[get_session] = get_test_db

	yield SessionLocal  # Тест виконується тут

	# Cleanup після тесту
	app.dependency_overrides.clear()
	await engine.dispose()


@pytest_asyncio.fixture
async def dodo(db):
	client = FakeDodoClient()
	app.dependency_overrides[get_dodo_client] = lambda: client
	return client


@pytest_asyncio.fixture
async def checkout_store(db):
	store = FakeCheckoutStore()
	app.dependency_overrides[get_checkout_store] = lambda: store
	return store


@pytest_asyncio.fixture
async def providers(db):
	fakes = {"replicate": FakeProvider("replicate"), "runninghub": FakeProvider("runninghub")}
	registry = ProviderRegistry(fakes)
	app.dependency_overrides[get_provider_registry] = lambda: registry
	return fakes


@pytest_asyncio.fixture
async def async_client(db, dodo, checkout_store, providers):  # Залежить від db
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://test") as client:
		yield client


async def create_user(SessionLocal, email=None, name="Test User"):
	user_id = str(uuid.uuid4())
	user = User(id=user_id, email=email or f"{user_id[:8]}@example.com", name=name, created_at=utcnow())
	token = f"tok_{uuid.uuid4().hex}"
	async with SessionLocal() as session:
		session.add(user)
		await session.flush()
		session.add(AuthSession(
			id=str(uuid.uuid4()),
			token=token,
			user_id=user_id,
			expires_at=utcnow() + timedelta(days=1),
			created_at=utcnow(),
		))
		await session.commit()
	return user, {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def user_auth(db):
	return await create_user(db, email="owner@example.com", name="Owner")


@pytest_asyncio.fixture
async def other_user_auth(db):
	return await create_user(db, email="intruder@example.com", name="Intruder")


async def add_subscription(SessionLocal, user, status="active", plan="creator",
						   billing_period="monthly", subscription_id="sub_1", days_ahead=30,
						   customer_id=None):
	async with SessionLocal() as session:
		session.add(Subscription(
			user_id=user.id,
			plan=plan,
			billing_period=billing_period,
			status=status,
			dodo_subscription_id=subscription_id,
			dodo_customer_id=customer_id,
			next_billing_date=utcnow() + timedelta(days=days_ahead),
			currency="USD",
			amount=2500,
			start_date=utcnow(),
			created_at=utcnow(),
			updated_at=utcnow(),
		))
		await session.commit()

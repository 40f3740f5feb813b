"""Static catalogs: subscription plans, credit packages, enhancement models."""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple


@dataclass(frozen=True)
class PricingPlan:
	key: str
	name: str
	prices: Dict[str, int]  # billing_period -> USD
	credits: int  # нарахування за один період
	periods: Tuple[str, ...]


PRICING_PLANS: Dict[str, PricingPlan] = {
	"basic": PricingPlan(
		key="basic", name="Basic",
		prices={"monthly": 9, "yearly": 96},
		credits=16200, periods=("monthly", "yearly"),
	),
	"creator": PricingPlan(
		key="creator", name="Creator",
		prices={"monthly": 25, "yearly": 252},
		credits=44400, periods=("monthly", "yearly"),
	),
	"professional": PricingPlan(
		key="professional", name="Professional",
		prices={"monthly": 39, "yearly": 408},
		credits=73800, periods=("monthly", "yearly"),
	),
	"enterprise": PricingPlan(
		key="enterprise", name="Enterprise",
		prices={"monthly": 99, "yearly": 1008},
		credits=187800, periods=("monthly", "yearly"),
	),
	"day pass": PricingPlan(
		key="day pass", name="Day Pass",
		prices={"daily": 10},
		credits=9900, periods=("daily",),
	),
}

# скільки днів живуть кредити підписки; yearly теж отримує місячні цикли
BILLING_PERIOD_EXPIRY_DAYS: Dict[str, int] = {
	"daily": 1,
	"monthly": 30,
	"yearly": 30,
}


@dataclass(frozen=True)
class CreditPackage:
	key: str
	credits: int
	price: int  # USD
	description: str
	bonus: int = 0
	currency: str = "USD"

	@property
	def total_credits(self) -> int:
		return self.credits + self.bonus


CREDIT_PACKAGES: Dict[str, CreditPackage] = {
	"starter": CreditPackage("starter", 1000, 10, "1,000 Credits Package"),
	"popular": CreditPackage("popular", 2500, 20, "2,500 Credits Package", bonus=500),
	"premium": CreditPackage("premium", 5000, 35, "5,000 Credits Package", bonus=1000),
	"ultimate": CreditPackage("ultimate", 10000, 60, "10,000 Credits Package", bonus=2500),
}

CUSTOM_CREDITS_RATE = 100  # кредитів за $1
MIN_CUSTOM_AMOUNT = 5
MAX_CUSTOM_AMOUNT = 500


@dataclass(frozen=True)
class ResolutionTier:
	width: int
	height: int
	credits: int

	@property
	def megapixels(self) -> float:
		return self.width * self.height / 1_000_000


def _above_default(value: Any, default: float) -> bool:
	if isinstance(value, bool):
		return value and not default
	if isinstance(value, (int, float)):
		return value > default
	return False


@dataclass(frozen=True)
class SettingIncrement:
	"""
	Надбавка за параметр задачі.
	percentage - відсоток від поточної суми, якщо значення вище за default;
	flat_credits - кредити за кожну одиницю понад default;
	conditional - відсоток першої умови, що спрацювала (від'ємний - знижка).
	"""
	key: str
	kind: str
	amount: float = 0
	default: float = 0
	conditions: Tuple[Tuple[Callable[[Any], bool], int], ...] = ()

	def added_credits(self, value: Any, current: int) -> int:
		if self.kind == "percentage":
			return round(current * self.amount / 100) if _above_default(value, self.default) else 0

		if self.kind == "flat_credits":
			if isinstance(value, bool):
				return int(self.amount) if _above_default(value, self.default) else 0
			if _above_default(value, self.default):
				return round((value - self.default) * self.amount)
			return 0

		for when, percent in self.conditions:
			try:
				matched = when(value)
			except (TypeError, ValueError):
				continue
			if matched:
				return round(current * percent / 100)
		return 0


@dataclass(frozen=True)
class EnhancementModel:
	id: str
	name: str
	provider: str  # replicate / runninghub
	# replicate: версія моделі; runninghub: workflow id
	reference: str
	resolution_tiers: Tuple[ResolutionTier, ...]
	image_node_id: Optional[str] = None
	image_field: str = "image"
	defaults: Dict[str, object] = field(default_factory=dict)
	setting_increments: Tuple[SettingIncrement, ...] = ()
	global_multiplier: float = 1.0
	flat_fee: int = 0


# базова сітка RunningHub-воркфлоу
RUNNINGHUB_TIERS = (
	ResolutionTier(500, 500, 50),
	ResolutionTier(1000, 1000, 120),
	ResolutionTier(1500, 1500, 180),
	ResolutionTier(2000, 2000, 300),
	ResolutionTier(3000, 3000, 500),
	ResolutionTier(4000, 4000, 800),
)

ENHANCEMENT_MODELS: Dict[str, EnhancementModel] = {
	"skin-editor": EnhancementModel(
		id="skin-editor", name="Skin Editor", provider="runninghub",
		reference="1965053107388432385", image_node_id="97",
		resolution_tiers=RUNNINGHUB_TIERS,
		setting_increments=(
			SettingIncrement("steps", "flat_credits", amount=5, default=10),
			SettingIncrement("guidance_scale", "conditional", conditions=(
				(lambda v: v > 10.0, 15),
				(lambda v: v > 5.0, 5),
			)),
			SettingIncrement("denoise", "conditional", conditions=(
				(lambda v: v > 0.8, 20),
				(lambda v: v > 0.5, 8),
			)),
		),
	),
	"smart-upscaler": EnhancementModel(
		id="smart-upscaler", name="Smart Upscaler", provider="runninghub",
		reference="2021189307448434690", image_node_id="1",
		resolution_tiers=RUNNINGHUB_TIERS,
		setting_increments=(
			SettingIncrement("enable_myupscaler", "percentage", amount=35),
			SettingIncrement("upscale_model", "conditional", conditions=(
				(lambda v: v == "4x-UltraSharp.pth", 15),
				(lambda v: v == "RealESRGAN_x4plus.pth", 10),
			)),
		),
		global_multiplier=2.0,
	),
	"real-esrgan": EnhancementModel(
		id="real-esrgan", name="Real-ESRGAN 4x", provider="replicate",
		reference="f121d640bd286e1fdc67f9799164c1d5be36ff74576ee11c803ae5b665dd46aa",
		resolution_tiers=(ResolutionTier(1000, 1000, 80), ResolutionTier(2000, 2000, 200)),
		defaults={"scale": 4, "face_enhance": False},
		setting_increments=(
			SettingIncrement("face_enhance", "percentage", amount=10),
		),
		global_multiplier=0.75,
	),
}

# без розмірів зображення задача тарифікується як 1000x1000
DEFAULT_MEGAPIXELS = 1.0
# параметри лише для тарифікації, провайдеру не передаються
PRICING_SETTINGS = ("imageWidth", "imageHeight")


def _dimension(value: Any) -> Optional[int]:
	try:
		number = int(value)
	except (TypeError, ValueError):
		return None
	return number if number > 0 else None


def find_resolution_tier(megapixels: float, tiers: Tuple[ResolutionTier, ...]) -> ResolutionTier:
	"""Найменший тир, що вміщує зображення; більші за всі - за найвищим тиром."""
	ordered = sorted(tiers, key=lambda tier: tier.megapixels)
	for tier in ordered:
		if megapixels <= tier.megapixels:
			return tier
	return ordered[-1]


def calculate_task_credits(model: EnhancementModel, settings: Optional[Dict[str, Any]] = None) -> int:
	"""
	Вартість задачі: тир за settings.imageWidth x imageHeight,
	надбавки за параметри, множник моделі, фіксована доплата.
	"""
	settings = settings or {}
	width = _dimension(settings.get("imageWidth"))
	height = _dimension(settings.get("imageHeight"))
	megapixels = width * height / 1_000_000 if width and height else DEFAULT_MEGAPIXELS

	total = find_resolution_tier(megapixels, model.resolution_tiers).credits
	for increment in model.setting_increments:
		value = settings.get(increment.key)
		if value is None:
			continue
		total += increment.added_credits(value, total)

	if model.global_multiplier != 1.0:
		total = round(total * model.global_multiplier)
	total += model.flat_fee
	return max(total, 0)


def get_plan(plan: str) -> Optional[PricingPlan]:
	return PRICING_PLANS.get(normalize_plan(plan))


def normalize_plan(value) -> str:
	return " ".join(str(value or "").strip().lower().replace("_", " ").split())


def normalize_billing_period(value) -> str:
	v = str(value or "monthly").strip().lower()
	if v in ("monthly", "yearly", "daily"):
		return v
	if v.startswith("month"):
		return "monthly"
	if v.startswith("year"):
		return "yearly"
	if v.startswith("day"):
		return "daily"
	return "monthly"

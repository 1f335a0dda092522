"""Summary: Default taxonomy shipped with LifeOS.

Importance: Provides starter groups, categories, and field schemas on first launch.
Alternatives: Require users to build every category manually.
"""

from __future__ import annotations

from lifeos.models import CategoryMeta, FieldSchema, FieldType, Group


STANDARD_FIELD_KEYS = ("summary", "time", "duration", "notes")
NOTES_FIELD_KEY = "notes"

CORE_GROUP_IDS = frozenset({"life", "body", "work"})

FINANCE_TAGS = (
    "餐饮", "交通", "购物", "娱乐", "医疗", "教育", "住房", "旅行", "人情", "工资", "理财", "其他",
)


def default_groups() -> list[Group]:
    """Summary: Return the built-in groups in display order.

    Importance: Core groups are the ones users may never delete.
    Alternatives: Start with no groups and let users create them.
    """

    return [
        Group(id="life", label="日常"),
        Group(id="body", label="身体"),
        Group(id="work", label="工作"),
    ]


def default_category_meta() -> dict[str, CategoryMeta]:
    """Summary: Return metadata for the built-in categories.

    Importance: Seeds the category keys used by the organizer prompt.
    Alternatives: Load category metadata from a bundled JSON file.
    """

    rows = [
        ("finance_tracking", "life", "bg-emerald-500", "Wallet", "记账"),
        ("diary", "life", "bg-indigo-500", "BookHeart", "日记/碎碎念"),
        ("study", "life", "bg-blue-500", "GraduationCap", "学习"),
        ("entertainment", "life", "bg-purple-500", "Gamepad2", "娱乐"),
        ("movie", "life", "bg-pink-500", "Film", "观影"),
        ("reading", "life", "bg-amber-600", "BookOpen", "读书"),
        ("dining", "life", "bg-orange-500", "Utensils", "餐饮"),
        ("housework", "life", "bg-cyan-600", "Home", "家务"),
        ("personal_care", "life", "bg-rose-400", "Sparkles", "个人护理"),
        ("exercise", "body", "bg-orange-600", "Dumbbell", "锻炼"),
        ("sleep", "body", "bg-slate-500", "Moon", "睡眠"),
        ("weight", "body", "bg-lime-600", "Scale", "体重"),
        ("medical", "body", "bg-red-500", "Stethoscope", "看病"),
        ("checkup", "body", "bg-teal-500", "Activity", "体检"),
        ("physiology", "body", "bg-rose-600", "Droplet", "生理期"),
        ("work", "work", "bg-sky-600", "Briefcase", "工作"),
        ("idea", "work", "bg-yellow-500", "Lightbulb", "灵感"),
        ("other", "life", "bg-gray-500", "Hash", "其他"),
    ]
    return {
        key: CategoryMeta(key=key, group=group, label=label, color=color, icon=icon)
        for key, group, color, icon, label in rows
    }


def leading_standard_fields() -> list[FieldSchema]:
    """Summary: Standard fields that open every schema."""

    return [
        FieldSchema(
            key="summary",
            label="简述",
            type=FieldType.TEXT,
            required=True,
            placeholder="10字以内具体的事件描述",
        ),
        FieldSchema(key="time", label="时间", type=FieldType.TEXT, required=True, placeholder="HH:mm"),
        FieldSchema(
            key="duration",
            label="时长",
            type=FieldType.TEXT,
            required=False,
            placeholder="例如: 30分钟",
        ),
    ]


def notes_field() -> FieldSchema:
    """Summary: Standard catch-all field that closes every schema."""

    return FieldSchema(
        key=NOTES_FIELD_KEY,
        label="详情",
        type=FieldType.TEXT,
        required=True,
        placeholder="原始信息全部内容原封不动的填写在这里",
    )


def build_schema(specific_fields: list[FieldSchema]) -> list[FieldSchema]:
    """Summary: Wrap category-specific fields with the standard fields.

    Importance: Guarantees summary, time, duration, and notes exist on every category.
    Alternatives: Validate standard fields lazily when rendering.
    """

    return [*leading_standard_fields(), *specific_fields, notes_field()]


def _text(key: str, label: str, required: bool = False) -> FieldSchema:
    return FieldSchema(key=key, label=label, type=FieldType.TEXT, required=required)


def _number(key: str, label: str, required: bool = False, unit: str | None = None) -> FieldSchema:
    return FieldSchema(key=key, label=label, type=FieldType.NUMBER, required=required, unit=unit)


def _select(key: str, label: str, options: tuple[str, ...], required: bool = False) -> FieldSchema:
    return FieldSchema(
        key=key, label=label, type=FieldType.SELECT, required=required, options=options
    )


def default_schemas() -> dict[str, list[FieldSchema]]:
    """Summary: Return field schemas for the built-in categories.

    Importance: Gives the organizer concrete fields to extract from day one.
    Alternatives: Start every category with the standard fields only.
    """

    return {
        "finance_tracking": build_schema(
            [
                _select("transaction_type", "交易类型", ("支出", "收入", "转账"), required=True),
                _number("amount", "金额", required=True, unit="元"),
                _select("currency", "货币", ("CNY", "USD", "EUR", "JPY", "HKD"), required=True),
                FieldSchema(
                    key="tags",
                    label="分类",
                    type=FieldType.MULTISELECT,
                    required=True,
                    options=FINANCE_TAGS,
                ),
                _select("payment_method", "支付方式", ("微信", "支付宝", "信用卡", "储蓄卡", "现金")),
                _text("merchant", "商家/对象"),
            ]
        ),
        "movie": build_schema(
            [
                _text("title", "电影名称", required=True),
                _text("genre", "类别"),
                FieldSchema(key="rating", label="评分", type=FieldType.RATING),
            ]
        ),
        "exercise": build_schema(
            [
                _text("type", "运动项目", required=True),
                _number("calories", "消耗卡路里"),
                _text("feeling", "感受"),
            ]
        ),
        "sleep": build_schema(
            [
                _text("waketime", "醒来时间"),
                _select("quality", "睡眠质量", ("很好", "还行", "一般", "差")),
            ]
        ),
        "personal_care": build_schema(
            [_text("item", "护理项目", required=True), _text("product", "使用产品")]
        ),
        "weight": build_schema(
            [_number("value", "体重(kg)", required=True), _number("fat_rate", "体脂率(%)")]
        ),
        "diary": build_schema([_text("mood", "心情"), _text("weather", "天气")]),
        "reading": build_schema(
            [
                _text("book_name", "书名", required=True),
                _text("author", "作者"),
                _text("progress", "进度"),
            ]
        ),
        "dining": build_schema(
            [_text("food_items", "食物", required=True), _number("calories", "热量")]
        ),
        "housework": build_schema([_text("task", "任务", required=True), _text("area", "区域")]),
        "medical": build_schema(
            [
                _text("symptom", "症状", required=True),
                _text("diagnosis", "诊断"),
                _text("medicine", "药物"),
            ]
        ),
        "checkup": build_schema(
            [
                _text("hospital", "医院"),
                _text("project", "项目", required=True),
                _text("result", "结果"),
            ]
        ),
        "physiology": build_schema(
            [_select("status", "状态", ("开始", "结束", "流量大", "流量小", "痛经"), required=True)]
        ),
        "work": build_schema(
            [
                _text("project", "项目"),
                _text("task", "任务", required=True),
                _select("status", "状态", ("进行中", "已完成", "延期"), required=True),
            ]
        ),
        "idea": build_schema([_text("topic", "主题", required=True)]),
        "study": build_schema(
            [_text("subject", "科目", required=True), _text("content", "内容", required=True)]
        ),
        "entertainment": build_schema(
            [_text("activity", "活动", required=True), _text("partners", "同伴")]
        ),
    }

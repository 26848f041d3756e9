# Generated manually for Promotions App - promo codes, usage records, attempt log

import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("tenants", "0001_initial"),
        ("billing", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PromoCode",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=50, unique=True)),
                ("name", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True)),
                (
                    "discount_type",
                    models.CharField(
                        choices=[("percentage", "Percentage"), ("fixed_amount", "Fixed Amount")],
                        max_length=20,
                    ),
                ),
                ("discount_value", models.DecimalField(decimal_places=2, max_digits=12)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                (
                    "deactivation_reason",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("", "Active or never deactivated"),
                            ("exhausted", "Usage limit reached"),
                            ("manual", "Deactivated by administrator"),
                        ],
                        default="",
                        max_length=20,
                    ),
                ),
                ("valid_from", models.DateTimeField()),
                ("valid_until", models.DateTimeField(blank=True, null=True)),
                ("max_uses", models.PositiveIntegerField(blank=True, null=True)),
                ("current_uses", models.PositiveIntegerField(default=0)),
                ("max_uses_per_user", models.PositiveIntegerField(blank=True, null=True)),
                ("applicable_plans", models.JSONField(blank=True, null=True)),
                ("minimum_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("new_users_only", models.BooleanField(default=False)),
                ("created_by", models.CharField(blank=True, max_length=128)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "tenant",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="promo_codes",
                        to="tenants.tenant",
                    ),
                ),
            ],
            options={
                "verbose_name": "Promo Code",
                "verbose_name_plural": "Promo Codes",
                "db_table": "promo_codes",
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(fields=["is_active", "valid_from", "valid_until"], name="promo_active_window_idx"),
                    models.Index(fields=["tenant", "is_active"], name="promo_tenant_active_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            ("max_uses__isnull", True),
                            ("current_uses__lte", models.F("max_uses")),
                            _connector="OR",
                        ),
                        name="promo_code_uses_within_limit",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("discount_value__gt", 0)), name="promo_code_discount_positive"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("discount_type", "percentage"), _negated=True),
                            ("discount_value__lte", 100),
                            _connector="OR",
                        ),
                        name="promo_code_percentage_max_100",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PromoCodeAttempt",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("user_id", models.CharField(max_length=128)),
                ("code", models.CharField(max_length=100)),
                ("success", models.BooleanField(default=False)),
                ("attempted_at", models.DateTimeField()),
            ],
            options={
                "db_table": "promo_code_attempts",
                "indexes": [models.Index(fields=["user_id", "attempted_at"], name="promo_attempt_user_time_idx")],
            },
        ),
        migrations.CreateModel(
            name="PromoCodeUsage",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("user_id", models.CharField(db_index=True, max_length=128)),
                ("discount_applied", models.DecimalField(decimal_places=2, max_digits=12)),
                ("original_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("final_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("used_at", models.DateTimeField(db_index=True)),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("user_agent", models.CharField(blank=True, max_length=500)),
                (
                    "promo_code",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="usages",
                        to="promotions.promocode",
                    ),
                ),
                (
                    "subscription",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="promo_code_usages",
                        to="billing.subscription",
                    ),
                ),
                (
                    "tenant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="promo_code_usages",
                        to="tenants.tenant",
                    ),
                ),
            ],
            options={
                "verbose_name": "Promo Code Usage",
                "verbose_name_plural": "Promo Code Usages",
                "db_table": "promo_code_usages",
                "ordering": ("-used_at",),
                "indexes": [models.Index(fields=["promo_code", "user_id"], name="promo_usage_code_user_idx")],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("discount_applied__gte", 0)), name="promo_usage_discount_non_negative"
                    ),
                ],
            },
        ),
    ]

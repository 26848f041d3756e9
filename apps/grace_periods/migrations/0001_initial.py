# Generated manually for Grace Periods App - trial window state machine

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
            name="GracePeriod",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("user_id", models.CharField(db_index=True, max_length=128)),
                ("start_date", models.DateTimeField()),
                ("end_date", models.DateTimeField(db_index=True)),
                ("duration_days", models.PositiveIntegerField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "Active"),
                            ("expired", "Expired"),
                            ("converted", "Converted"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="active",
                        max_length=20,
                    ),
                ),
                (
                    "source",
                    models.CharField(
                        choices=[
                            ("new_registration", "New Registration"),
                            ("plan_migration", "Plan Migration"),
                            ("admin_granted", "Granted by Administrator"),
                            ("promo_code", "Promo Code"),
                        ],
                        max_length=30,
                    ),
                ),
                ("source_details", models.JSONField(blank=True, default=dict)),
                ("notifications_sent", models.JSONField(blank=True, default=list)),
                ("original_end_date", models.DateTimeField(blank=True, null=True)),
                ("extension_history", models.JSONField(blank=True, default=list)),
                ("converted_at", models.DateTimeField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("version", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "selected_plan",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="billing.plan",
                    ),
                ),
                (
                    "subscription",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="converted_grace_period",
                        to="billing.subscription",
                    ),
                ),
                (
                    "tenant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="grace_periods",
                        to="tenants.tenant",
                    ),
                ),
            ],
            options={
                "verbose_name": "Grace Period",
                "verbose_name_plural": "Grace Periods",
                "db_table": "grace_periods",
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(fields=["status", "end_date"], name="grace_status_end_idx"),
                    models.Index(fields=["tenant", "status"], name="grace_tenant_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "active")),
                        fields=("user_id",),
                        name="uniq_active_grace_period_per_user",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("duration_days__gte", 1)), name="grace_period_duration_positive"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("end_date__gte", models.F("start_date"))),
                        name="grace_period_end_after_start",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("status", "converted"), _negated=True),
                            models.Q(("converted_at__isnull", False), ("selected_plan__isnull", False)),
                            _connector="OR",
                        ),
                        name="grace_period_converted_has_plan",
                    ),
                ],
            },
        ),
    ]

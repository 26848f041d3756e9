# Generated manually for Billing App - links to grace periods and promo codes

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("billing", "0001_initial"),
        ("grace_periods", "0001_initial"),
        ("promotions", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="subscription",
            name="grace_period",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.PROTECT,
                related_name="subscriptions",
                to="grace_periods.graceperiod",
            ),
        ),
        migrations.AddField(
            model_name="subscription",
            name="promo_code",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="subscriptions",
                to="promotions.promocode",
            ),
        ),
        migrations.AddIndex(
            model_name="subscription",
            index=models.Index(fields=["grace_period", "status"], name="sub_grace_status_idx"),
        ),
    ]

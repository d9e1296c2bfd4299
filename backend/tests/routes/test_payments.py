"""Payment, availability, health and metrics route tests."""

from decimal import Decimal
from unittest.mock import patch

from fastapi import status
import pytest
import stripe

from app.core.exceptions import PaymentProcessorException
from app.models.payment import PaymentIntentRecord
from app.services.payment_gateway import Authorization

from ..factories import BOOKING_DATE, SATURDAY, auth_headers, create_test_booking


class TestPaymentIntentRoute:
    def test_create_intent(
        self, client_with_gateway, mock_gateway, provider_id, customer_id, provider_service
    ):
        mock_gateway.authorize.return_value = Authorization(
            payment_intent_id="pi_test_1",
            client_secret="pi_test_1_secret",
            status="requires_payment_method",
            amount=Decimal("110.00"),
            base_amount=Decimal("100.00"),
            platform_fee=Decimal("10.00"),
        )

        response = client_with_gateway.post(
            "/api/v1/payments/intents",
            json={"service_id": provider_service.id, "provider_id": provider_id},
            headers=auth_headers(customer_id),
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "clientSecret": "pi_test_1_secret",
            "paymentIntentId": "pi_test_1",
            "amount": 110.0,
            "baseAmount": 100.0,
            "platformFee": 10.0,
        }
        assert mock_gateway.authorize.call_args.kwargs["customer_id"] == customer_id

    def test_unknown_service_is_404(self, client_with_gateway, provider_id, customer_id):
        response = client_with_gateway.post(
            "/api/v1/payments/intents",
            json={"service_id": "missing", "provider_id": provider_id},
            headers=auth_headers(customer_id),
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["code"] == "SERVICE_NOT_FOUND"


class TestConnectStatusRoute:
    def test_live_status(self, client_with_gateway, provider_id, connected_account):
        response = client_with_gateway.get(
            "/api/v1/payments/connect/status", headers=auth_headers(provider_id)
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "hasStripeAccount": True,
            "accountSetupComplete": True,
            "charges_enabled": True,
            "details_submitted": True,
            "accountId": "acct_test_provider",
            "requirements": [],
        }

    def test_stripe_unreachable_is_502(
        self, client_with_gateway, mock_gateway, provider_id, connected_account
    ):
        mock_gateway.retrieve_account.side_effect = PaymentProcessorException(
            "Failed to check account status", stripe_code="api_connection_error"
        )

        response = client_with_gateway.get(
            "/api/v1/payments/connect/status", headers=auth_headers(provider_id)
        )

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.json()["details"] == {"stripe_code": "api_connection_error"}


class TestStripeWebhookRoute:
    def test_missing_signature_is_400(self, client):
        response = client.post("/api/v1/payments/webhooks/stripe", content=b"{}")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "INVALID_WEBHOOK_SIGNATURE"

    def test_invalid_signature_is_400(self, client):
        with patch(
            "stripe.Webhook.construct_event",
            side_effect=stripe.SignatureVerificationError("bad", "t=1,v1=x"),
        ):
            response = client.post(
                "/api/v1/payments/webhooks/stripe",
                content=b"{}",
                headers={"stripe-signature": "t=1,v1=x"},
            )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_verified_event_is_applied(
        self, db, client, provider_id, customer_id, provider_service
    ):
        booking = create_test_booking(
            db,
            provider_id=provider_id,
            customer_id=customer_id,
            service_id=provider_service.id,
            payment_intent_id="pi_hook",
        )
        db.add(
            PaymentIntentRecord(
                booking_id=booking.id,
                stripe_payment_intent_id="pi_hook",
                amount=Decimal("110.00"),
                currency="usd",
                status="requires_capture",
                payment_method_types=["card"],
                intent_metadata={},
            )
        )
        db.commit()
        event = {
            "id": "evt_1",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_hook", "status": "succeeded"}},
        }

        with patch("stripe.Webhook.construct_event", return_value=event):
            response = client.post(
                "/api/v1/payments/webhooks/stripe",
                content=b"{}",
                headers={"stripe-signature": "t=1,v1=ok"},
            )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "processed", "eventType": "payment_intent.succeeded"}
        assert db.query(PaymentIntentRecord).one().status == "succeeded"


class TestAvailabilityRoute:
    def test_slots_for_open_day(
        self, db, client, provider_id, customer_id, provider_service, provider_schedule
    ):
        create_test_booking(
            db, provider_id=provider_id, customer_id=customer_id, service_id=provider_service.id
        )

        response = client.get(
            f"/api/v1/providers/{provider_id}/availability",
            params={"date": BOOKING_DATE.isoformat(), "service_id": provider_service.id},
            headers=auth_headers(customer_id),
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["providerId"] == provider_id
        assert body["date"] == "2030-01-07"
        assert body["isFullyBooked"] is False
        assert "10:00" not in body["availableSlots"]
        assert "11:00" in body["availableSlots"]

    def test_disabled_day_is_fully_booked(self, client, provider_id, customer_id, provider_schedule):
        response = client.get(
            f"/api/v1/providers/{provider_id}/availability",
            params={"date": SATURDAY.isoformat()},
            headers=auth_headers(customer_id),
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["availableSlots"] == []
        assert response.json()["isFullyBooked"] is True

    def test_bad_date_is_400(self, client, provider_id, customer_id):
        response = client.get(
            f"/api/v1/providers/{provider_id}/availability",
            params={"date": "next-tuesday"},
            headers=auth_headers(customer_id),
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestOperationalRoutes:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "ok"}

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert "X-Response-Time-MS" in response.headers

    def test_prometheus_exposition(self, client):
        client.get("/health")

        response = client.get("/metrics/prometheus")

        assert response.status_code == status.HTTP_200_OK
        assert "http_requests_total" in response.text

    @pytest.mark.parametrize("path", ["/api/v1/nope", "/nope"])
    def test_unknown_path_uses_error_envelope(self, client, path):
        response = client.get(path)

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["code"] == "NOT_FOUND"

"""
Integration tests for the quote lifecycle: draft, preview, finalize, decide.
"""
import re
import threading
import pytest
from datetime import timedelta
from decimal import Decimal

from proposals.database import get_session
from proposals.exceptions import (
    ValidationError, InvalidTransitionError, ConflictError, ArtifactMissingError,
    DependencyError, ProductNotFoundError
)
from proposals.models import Quote, QuoteLineItem, QuoteStatus, AuditAction
from proposals.services import quote_service
from proposals.services.audit_service import get_audit_logs
from proposals.services.catalog_service import deactivate_product, delete_product
from proposals.services.quote_service import (
    create_draft, update_draft, preview_quote, preview_existing, finalize_quote, create_and_finalize,
    approve_quote, reject_quote, expire_quotes, get_quote, list_quotes, delete_quote,
    download_pdf, get_download_link
)
from proposals.services.storage_service import artifact_path, get_artifact_store
from proposals.utils.timeutils import utcnow

QUOTE_NUMBER = re.compile(r'^Q-\d{8}-[0-9A-F]{8}$')


def audit_actions(session, quote_id):
    return [entry.action for entry in get_audit_logs(session, entity_type='Quote', entity_id=quote_id)]


class TestDraft:

    def test_create_draft_prices_and_persists(self, session, quote_payload):
        quote = create_draft(session, quote_payload, 'alice')

        assert quote.id is not None
        assert quote.status == QuoteStatus.DRAFT
        assert QUOTE_NUMBER.match(quote.quote_number)
        assert quote.version == 1
        assert quote.total_amount == Decimal('135.00')
        assert quote.currency == 'EUR'
        assert quote.created_by == 'alice'
        assert quote.pdf_path is None

        line = quote.line_items[0]
        assert line.sku == 'VOD-EV-001'
        assert line.unit_price == Decimal('15.00')
        assert line.line_total == Decimal('135.00')
        assert audit_actions(session, quote.id) == ['QuoteCreated']

    def test_customer_name_required(self, session, quote_payload):
        quote_payload['customer_name'] = '  '
        with pytest.raises(ValidationError) as exc:
            create_draft(session, quote_payload, 'alice')
        assert exc.value.field == 'customer_name'

    def test_unknown_product_creates_nothing(self, session, quote_payload):
        quote_payload['line_items'].append({'product_id': 999, 'quantity': 1})
        with pytest.raises(ProductNotFoundError):
            create_draft(session, quote_payload, 'alice')
        assert session.query(Quote).count() == 0

    def test_mixed_currencies_rejected(self, session, quote_payload, product_factory):
        usd = product_factory('US-001', 'US Voice', '20.00', currency='USD')
        quote_payload['line_items'].append({'product_id': usd.id, 'quantity': 1})
        with pytest.raises(ValidationError):
            create_draft(session, quote_payload, 'alice')

    def test_quote_numbers_are_unique(self, session, quote_payload):
        numbers = {create_draft(session, quote_payload, 'alice').quote_number for _ in range(20)}
        assert len(numbers) == 20

    def test_number_collisions_exhaust_retries(self, session, quote_payload, monkeypatch):
        monkeypatch.setattr(quote_service.secrets, 'token_hex', lambda n: 'abcd1234')
        create_draft(session, quote_payload, 'alice')
        with pytest.raises(ConflictError):
            create_draft(session, quote_payload, 'alice')

    def test_update_draft_reprices(self, session, quote_payload, wan_product):
        quote = create_draft(session, quote_payload, 'alice')
        quote_payload['line_items'].append({'product_id': wan_product.id, 'quantity': 2})
        quote_payload['notes'] = 'Two sites'

        updated = update_draft(session, quote.id, quote_payload, 'alice')

        assert updated.total_amount == Decimal('635.00')
        assert [line.sku for line in updated.line_items] == ['VOD-EV-001', 'VOD-NW-001']
        assert session.query(QuoteLineItem).count() == 2
        assert audit_actions(session, quote.id) == ['QuoteUpdated', 'QuoteCreated']


class TestPreview:

    def test_preview_is_not_persisted(self, session, quote_payload):
        quote, pdf = preview_quote(session, quote_payload, 'alice')

        assert pdf.startswith(b'%PDF-')
        assert quote.id is None
        assert quote.status == QuoteStatus.PREVIEW
        assert quote.total_amount == Decimal('135.00')
        assert session.query(Quote).count() == 0
        assert session.query(QuoteLineItem).count() == 0
        assert get_artifact_store().list() == []

    def test_preview_existing_draft(self, session, quote_payload):
        quote = create_draft(session, quote_payload, 'alice')
        _, pdf = preview_existing(session, quote.id)

        assert pdf.startswith(b'%PDF-')
        assert get_quote(session, quote.id).status == QuoteStatus.DRAFT
        assert get_artifact_store().list() == []


class TestFinalize:

    def test_finalize_stores_artifact(self, session, quote_payload):
        quote = create_draft(session, quote_payload, 'alice')
        result = finalize_quote(session, quote.id, 'alice', validity_days=14, notes='Valid for two weeks')

        path = artifact_path(quote.quote_number, 1)
        assert result.already_finalized is False
        assert result.quote.status == QuoteStatus.FINALIZED
        assert result.quote.pdf_path == path
        assert result.quote.finalized_at is not None
        assert result.quote.valid_until == quote.created_at + timedelta(days=14)
        assert result.quote.notes == 'Valid for two weeks'
        assert result.pdf.startswith(b'%PDF-')
        assert get_artifact_store().retrieve(path) == result.pdf
        assert result.download_url.startswith('http://localhost:5000/api/artifacts/')
        assert audit_actions(session, quote.id) == ['QuoteFinalized', 'QuoteCreated']

    def test_default_validity(self, app, session, quote_payload):
        quote = create_draft(session, quote_payload, 'alice')
        result = finalize_quote(session, quote.id, 'alice')
        assert result.quote.valid_until == quote.created_at + timedelta(days=app.config['QUOTE_VALID_DAYS'])

    def test_finalize_twice_is_idempotent(self, session, quote_payload):
        quote = create_draft(session, quote_payload, 'alice')
        first = finalize_quote(session, quote.id, 'alice')
        second = finalize_quote(session, quote.id, 'bob')

        assert second.already_finalized is True
        assert second.pdf == first.pdf
        assert second.quote.finalized_at == first.quote.finalized_at
        assert get_artifact_store().list(quote.quote_number) == [artifact_path(quote.quote_number, 1)]
        assert audit_actions(session, quote.id).count('QuoteFinalized') == 1

    def test_inline_create_and_finalize(self, session, quote_payload):
        quote_payload['validity_days'] = 7
        result = create_and_finalize(session, quote_payload, 'alice')

        assert result.quote.status == QuoteStatus.FINALIZED
        assert result.quote.valid_until == result.quote.created_at + timedelta(days=7)
        assert audit_actions(session, result.quote.id) == ['QuoteFinalized', 'QuoteCreated']

    def test_reloaded_draft_with_fine_discount_finalizes(self, session, product_factory):
        product = product_factory('VOD-PS-001', 'Professional Services Day', '100.00')
        payload = {
            'customer_name': 'Acme Ltd',
            'line_items': [{'product_id': product.id, 'quantity': 1, 'discount_percent': '12.345'}],
        }
        quote_id = create_draft(session, payload, 'alice').id
        session.remove()

        result = finalize_quote(session, quote_id, 'alice')

        assert result.quote.status == QuoteStatus.FINALIZED
        assert result.quote.total_amount == Decimal('87.65')
        assert result.quote.line_items[0].discount_percent == Decimal('12.35')

    def test_invalid_validity_days(self, session, quote_payload):
        quote = create_draft(session, quote_payload, 'alice')
        with pytest.raises(ValidationError):
            finalize_quote(session, quote.id, 'alice', validity_days=0)

    def test_upload_failure_leaves_draft(self, session, quote_payload, monkeypatch):
        quote = create_draft(session, quote_payload, 'alice')

        def failing_store(path, data, content_type='application/pdf'):
            raise DependencyError('Could not store the generated document')

        monkeypatch.setattr(get_artifact_store(), 'store', failing_store)
        with pytest.raises(DependencyError):
            finalize_quote(session, quote.id, 'alice')

        quote = get_quote(session, quote.id)
        assert quote.status == QuoteStatus.DRAFT
        assert quote.pdf_path is None
        assert quote.finalized_at is None
        assert 'QuoteFinalized' not in audit_actions(session, quote.id)

    def test_inline_finalize_failure_keeps_nothing(self, session, quote_payload, monkeypatch):
        def failing_store(path, data, content_type='application/pdf'):
            raise DependencyError('Could not store the generated document')

        monkeypatch.setattr(get_artifact_store(), 'store', failing_store)
        with pytest.raises(DependencyError):
            create_and_finalize(session, quote_payload, 'alice')

        assert list_quotes(session) == []
        assert session.query(QuoteLineItem).count() == 0
        assert get_audit_logs(session, entity_type='Quote') == []

    def test_snapshot_survives_catalog_changes(self, session, quote_payload, voice_product):
        quote = create_draft(session, quote_payload, 'alice')

        voice_product.unit_price = Decimal('99.00')
        voice_product.name = 'Renamed Voice'
        session.commit()
        deactivate_product(session, voice_product.id, 'admin')

        result = finalize_quote(session, quote.id, 'alice')
        session.expire_all()
        stored = get_quote(session, result.quote.id)

        assert stored.total_amount == Decimal('135.00')
        assert stored.line_items[0].unit_price == Decimal('15.00')
        assert stored.line_items[0].product_name == 'Enterprise Voice Standard'

    def test_referenced_product_cannot_be_deleted(self, session, quote_payload, voice_product):
        create_draft(session, quote_payload, 'alice')
        with pytest.raises(ConflictError) as exc:
            delete_product(session, voice_product.id)
        assert exc.value.retryable is False

    def test_concurrent_finalize_stores_one_artifact(self, app, session, quote_payload):
        quote = create_draft(session, quote_payload, 'alice')
        quote_id, number = quote.id, quote.quote_number
        workers = 4
        barrier = threading.Barrier(workers)
        outcomes, failures = [], []

        def finalize_in_thread():
            with app.app_context():
                barrier.wait()
                try:
                    result = finalize_quote(get_session(), quote_id, 'alice')
                    outcomes.append((result.quote.status, result.quote.pdf_path,
                                     result.already_finalized, result.pdf))
                except Exception as e:
                    failures.append(e)

        threads = [threading.Thread(target=finalize_in_thread) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert failures == []
        assert len(outcomes) == workers
        assert {status for status, _, _, _ in outcomes} == {QuoteStatus.FINALIZED}
        assert len({path for _, path, _, _ in outcomes}) == 1
        assert len({pdf for _, _, _, pdf in outcomes}) == 1
        assert [fresh for _, _, fresh, _ in outcomes].count(False) == 1
        assert get_artifact_store().list(number) == [artifact_path(number, 1)]

        session.expire_all()
        assert audit_actions(session, quote_id).count('QuoteFinalized') == 1


class TestDecisions:

    @pytest.fixture
    def finalized(self, session, quote_payload):
        quote = create_draft(session, quote_payload, 'alice')
        return finalize_quote(session, quote.id, 'alice').quote

    def test_draft_cannot_be_approved(self, session, quote_payload):
        quote = create_draft(session, quote_payload, 'alice')
        with pytest.raises(InvalidTransitionError):
            approve_quote(session, quote.id, 'manager')
        assert get_quote(session, quote.id).status == QuoteStatus.DRAFT

    def test_approve(self, session, finalized):
        quote = approve_quote(session, finalized.id, 'manager', 'Signed off')
        assert quote.status == QuoteStatus.APPROVED
        assert audit_actions(session, quote.id)[0] == 'QuoteApproved'

    def test_decision_is_final(self, session, finalized):
        reject_quote(session, finalized.id, 'manager')
        with pytest.raises(InvalidTransitionError):
            approve_quote(session, finalized.id, 'manager')
        with pytest.raises(InvalidTransitionError):
            finalize_quote(session, finalized.id, 'alice')

    def test_finalized_quote_is_not_editable(self, session, finalized, quote_payload):
        with pytest.raises(InvalidTransitionError):
            update_draft(session, finalized.id, quote_payload, 'alice')

    def test_expire_sweep(self, session, finalized):
        assert expire_quotes(session, now=utcnow()) == 0
        assert expire_quotes(session, now=finalized.valid_until + timedelta(seconds=1)) == 1

        assert get_quote(session, finalized.id).status == QuoteStatus.EXPIRED
        assert audit_actions(session, finalized.id)[0] == 'QuoteExpired'
        with pytest.raises(InvalidTransitionError):
            approve_quote(session, finalized.id, 'manager')

    def test_lazy_expiry_on_read(self, session, finalized):
        finalized.valid_until = utcnow() - timedelta(days=1)
        session.commit()

        assert get_quote(session, finalized.id).status == QuoteStatus.EXPIRED
        # Artifact stays downloadable after expiry
        _, pdf = download_pdf(session, finalized.id)
        assert pdf.startswith(b'%PDF-')


class TestDeleteAndDownload:

    def test_delete_draft(self, session, quote_payload):
        quote = create_draft(session, quote_payload, 'alice')
        delete_quote(session, quote.id, 'alice')

        assert session.query(Quote).count() == 0
        assert session.query(QuoteLineItem).count() == 0
        entries = get_audit_logs(session, action=AuditAction.QUOTE_DELETED)
        assert [entry.entity_id for entry in entries] == [quote.id]

    def test_issued_quote_cannot_be_deleted(self, session, quote_payload):
        quote = create_draft(session, quote_payload, 'alice')
        result = finalize_quote(session, quote.id, 'alice')

        with pytest.raises(InvalidTransitionError):
            delete_quote(session, quote.id, 'alice')
        assert get_artifact_store().exists(result.quote.pdf_path)

    def test_draft_has_no_artifact(self, session, quote_payload):
        quote = create_draft(session, quote_payload, 'alice')
        with pytest.raises(ArtifactMissingError):
            download_pdf(session, quote.id)
        with pytest.raises(ArtifactMissingError):
            get_download_link(session, quote.id)

    def test_download_after_finalize(self, session, quote_payload):
        quote = create_draft(session, quote_payload, 'alice')
        result = finalize_quote(session, quote.id, 'alice')

        _, pdf = download_pdf(session, quote.id)
        assert pdf == result.pdf
        assert get_download_link(session, quote.id, ttl_hours=1).startswith('http://localhost:5000/api/artifacts/')

    def test_list_quotes_newest_first(self, session, quote_payload):
        first = create_draft(session, quote_payload, 'alice')
        second = create_draft(session, quote_payload, 'bob')
        finalize_quote(session, second.id, 'bob')

        assert [q.id for q in list_quotes(session)] == [second.id, first.id]
        assert [q.id for q in list_quotes(session, user_id='alice')] == [first.id]
        assert [q.id for q in list_quotes(session, status='finalized')] == [second.id]
        with pytest.raises(ValidationError):
            list_quotes(session, status='SENT')

import pytest
from django.core.exceptions import ValidationError
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import override_settings

from .attendee_service import get_attendee_request_manager
from .exceptions import Conflict, InvalidState, ValidationFailed
from .kill_service import get_kill_manager
from .models import AttendeeRequest, Notification

pytestmark = pytest.mark.django_db

PNG = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64


def test_submit_and_approve(make_kill, make_user, admin, now):
    carol = make_user('Carol')
    kill = make_kill()
    manager = get_attendee_request_manager()

    request = manager.submit(carol, kill.pk, reason='Was on voice, missed the screenshot')
    assert request.status == AttendeeRequest.STATUS_PENDING
    assert request.character_name == 'Carol'
    with pytest.raises(Conflict):
        manager.submit(carol, kill.pk)

    resolved = manager.resolve(admin, request.pk, approve=True, now=now)

    assert resolved.status == AttendeeRequest.STATUS_APPROVED
    kill.refresh_from_db()
    assert kill.attendees == ['Alice', 'Bob', 'Carol']
    assert Notification.objects.filter(user=carol).exists()
    with pytest.raises(InvalidState):
        manager.resolve(admin, request.pk, approve=True, now=now)


def test_rejection_needs_comment(make_kill, make_user, admin):
    carol = make_user('Carol')
    kill = make_kill()
    manager = get_attendee_request_manager()
    request = manager.submit(carol, kill.pk)

    with pytest.raises(ValidationFailed):
        manager.resolve(admin, request.pk, approve=False)

    rejected = manager.resolve(admin, request.pk, approve=False, comment='Not in the screenshot')
    assert rejected.status == AttendeeRequest.STATUS_REJECTED
    kill.refresh_from_db()
    assert 'Carol' not in kill.attendees


def test_submit_checks(make_kill, make_user, admin):
    alice = make_user('Alice')
    manager = get_attendee_request_manager()
    kill = make_kill()

    with pytest.raises(Conflict):
        manager.submit(alice, kill.pk)

    get_kill_manager().resolve_item(kill.items.get().pk, 'Bob', admin)
    with pytest.raises(InvalidState):
        manager.submit(make_user('Carol'), kill.pk)


def test_proof_image_is_stored(make_kill, make_user):
    carol = make_user('Carol')
    upload = SimpleUploadedFile('proof.png', PNG, content_type='image/png')

    request = get_attendee_request_manager().submit(carol, make_kill().pk, proof_image=upload)

    assert request.proof_image.name.startswith('uploads/proofs/')


@override_settings(LOOT_UPLOAD_MAX_BYTES=10)
def test_oversized_proof_is_rejected(make_kill, make_user):
    upload = SimpleUploadedFile('proof.png', PNG, content_type='image/png')
    with pytest.raises(ValidationError):
        get_attendee_request_manager().submit(make_user('Carol'), make_kill().pk, proof_image=upload)


def test_non_image_proof_is_rejected(make_kill, make_user):
    upload = SimpleUploadedFile('proof.exe', b'MZ' + b'\x00' * 16, content_type='application/octet-stream')
    with pytest.raises(ValidationError):
        get_attendee_request_manager().submit(make_user('Carol'), make_kill().pk, proof_image=upload)

from consult_queue.main import create_queue_service
from consult_queue.services.appointments import HttpAppointmentLookup
from consult_queue.services.notifications import QueueNotifier
from consult_queue.services.repository import InMemoryQueueRepository


def test_create_in_memory_service():
    service = create_queue_service(persistent=False, publish_events=False)

    assert isinstance(service.repository, InMemoryQueueRepository)
    assert type(service.notifier) is QueueNotifier
    assert isinstance(service.appointments, HttpAppointmentLookup)
    assert service.max_write_attempts == 3
    service.appointments.close()

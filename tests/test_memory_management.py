"""
Tests for the MemoryService facade wired to in-memory fakes.
"""

from datetime import datetime, timedelta, timezone

import pytest

from context_memory.services.memory_management import MemoryService
from context_memory.utils.errors import InvalidInputError
from context_memory.utils.opensearch_client import OpenSearchError

from conftest import FakeEmbed, FakeVectorStore, make_turns

CONTENTS = ['What is grace?', 'Grace is unmerited favor.', 'How does that relate to faith?']


def test_index_created_on_startup(memory_service, fake_store):
    assert fake_store.index_created


def test_index_failure_does_not_block_startup(app_config):
    class _BrokenStore(FakeVectorStore):
        def create_index_if_not_exists(self, sync_wait=15.0):
            raise OpenSearchError('cluster unreachable')

    service = MemoryService(app_config=app_config, embed=FakeEmbed(), store=_BrokenStore())

    assert service.store_conversation_memory('conv-c', 'user-1', make_turns('conv-c', 'user-1', CONTENTS[:1])) == ['conv-c_0']


def test_components_follow_config(memory_service, app_config):
    assert memory_service.assembler.retrieval_width_factor == app_config.context.retrieval_width_factor
    assert memory_service.assembler.min_score == app_config.memory.min_score


def test_store_then_retrieve(memory_service):
    turns = make_turns('conv-d', 'user-1', CONTENTS)
    memory_service.store_conversation_memory('conv-d', 'user-1', turns)

    results = memory_service.retrieve(CONTENTS[0], 'user-1', min_score=0.9999)

    assert [result.content for result in results] == [CONTENTS[0]]
    assert results[0].score == pytest.approx(1.0)


def test_store_is_idempotent(memory_service, fake_store):
    turns = make_turns('conv-d', 'user-1', CONTENTS)

    memory_service.store_conversation_memory('conv-d', 'user-1', turns)
    memory_service.store_conversation_memory('conv-d', 'user-1', turns)

    assert len(fake_store.records) == 3


def test_assemble_context_excludes_current_conversation(memory_service):
    memory_service.store_conversation_memory('conv-d', 'user-1', make_turns('conv-d', 'user-1', CONTENTS))
    memory_service.store_conversation_memory('conv-c', 'user-1', make_turns('conv-c', 'user-1', CONTENTS))
    live_turns = make_turns('conv-c', 'user-1', CONTENTS[:1])

    context = memory_service.assemble_context('conv-c', 'user-1', CONTENTS[0], live_turns)

    assert context.entries[0].live
    assert all(entry.conversation_id == 'conv-d' for entry in context.entries[1:])
    assert any(entry.content == CONTENTS[0] for entry in context.entries[1:])


def test_delete_conversation_memory(memory_service, fake_store):
    memory_service.store_conversation_memory('conv-c', 'user-1', make_turns('conv-c', 'user-1', CONTENTS))
    memory_service.store_conversation_memory('conv-d', 'user-1', make_turns('conv-d', 'user-1', CONTENTS[:1]))

    assert memory_service.delete_conversation_memory('conv-c') == 3
    assert set(fake_store.records) == {'conv-d_0'}


def test_delete_user_memory(memory_service, fake_store):
    memory_service.store_conversation_memory('conv-c', 'user-1', make_turns('conv-c', 'user-1', CONTENTS))
    memory_service.store_conversation_memory('conv-e', 'user-2', make_turns('conv-e', 'user-2', CONTENTS[:2]))

    assert memory_service.delete_user_memory('user-1') == 3
    assert memory_service.retrieve(CONTENTS[0], 'user-1', min_score=0.0) == []
    assert len(fake_store.records) == 2


@pytest.mark.parametrize('method', ['delete_conversation_memory', 'delete_user_memory', 'get_memory_stats'])
def test_blank_ids_rejected(memory_service, fake_store, method):
    memory_service.store_conversation_memory('conv-c', 'user-1', make_turns('conv-c', 'user-1', CONTENTS))

    with pytest.raises(InvalidInputError):
        getattr(memory_service, method)('  ')
    assert len(fake_store.records) == 3


def test_cleanup_old_memories(memory_service, fake_store):
    now = datetime.now(timezone.utc)
    memory_service.store_conversation_memory('conv-old', 'user-1',
                                             make_turns('conv-old', 'user-1', CONTENTS[:2], start=now - timedelta(days=200)))
    memory_service.store_conversation_memory('conv-new', 'user-1',
                                             make_turns('conv-new', 'user-1', CONTENTS[:1], start=now - timedelta(days=1)))

    assert memory_service.cleanup_old_memories('user-1') == 2
    assert set(fake_store.records) == {'conv-new_0'}


def test_cleanup_with_explicit_window(memory_service, fake_store):
    now = datetime.now(timezone.utc)
    memory_service.store_conversation_memory('conv-c', 'user-1',
                                             make_turns('conv-c', 'user-1', CONTENTS[:1], start=now - timedelta(days=10)))

    assert memory_service.cleanup_old_memories('user-1', older_than_days=30) == 0
    assert memory_service.cleanup_old_memories('user-1', older_than_days=5) == 1


def test_cleanup_rejects_negative_window(memory_service):
    with pytest.raises(InvalidInputError):
        memory_service.cleanup_old_memories('user-1', older_than_days=-1)


def test_memory_stats(memory_service):
    memory_service.store_conversation_memory('conv-c', 'user-1', make_turns('conv-c', 'user-1', CONTENTS))
    memory_service.store_conversation_memory('conv-d', 'user-1', make_turns('conv-d', 'user-1', ['Tell me about prayer']))

    stats = memory_service.get_memory_stats('user-1')

    assert stats.user_id == 'user-1'
    assert stats.total_memories == 4
    assert stats.total_conversations == 2
    assert stats.top_topics[0] == 'grace'
    assert 'prayer' in stats.top_topics


def test_store_conversation_from_log(memory_service, fake_log, fake_store):
    fake_log.conversations['conv-c'] = make_turns('conv-c', 'user-1', CONTENTS)

    record_ids = memory_service.store_conversation_from_log('conv-c', 'user-1')

    assert record_ids == ['conv-c_0', 'conv-c_1', 'conv-c_2']
    assert len(fake_store.records) == 3


def test_generate_memory_summary(memory_service, fake_log):
    fake_log.conversations['conv-c'] = make_turns('conv-c', 'user-1', CONTENTS)

    assert memory_service.generate_memory_summary('conv-c') == 'Conversation covered: grace, faith'
    assert memory_service.generate_memory_summary('conv-missing') == ''


def test_log_operations_need_a_log_store(app_config):
    service = MemoryService(app_config=app_config, embed=FakeEmbed(), store=FakeVectorStore())

    with pytest.raises(InvalidInputError):
        service.generate_memory_summary('conv-c')
    with pytest.raises(InvalidInputError):
        service.store_conversation_from_log('conv-c', 'user-1')

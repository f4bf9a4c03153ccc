"""
Test Flask JSON API

Run with: pytest tests/test_app.py -v
"""

import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

import app as app_module


@pytest.fixture
def client():
    with tempfile.TemporaryDirectory() as tmpdir:
        app_module.app.config['TESTING'] = True
        app_module.app.config['ASSESSMENT_DIR'] = tmpdir
        app_module.current_assessment = {'engine': None, 'is_active': False}
        with app_module.app.test_client() as client:
            yield client


def start(client, client_id="C-1001"):
    response = client.post('/api/assessments', json={'client_id': client_id})
    assert response.status_code == 200
    return response.get_json()['assessment_id']


def test_index_lists_sections(client):
    body = client.get('/').get_json()
    assert body['modes'] == ['edit', 'view', 'print']
    assert body['sections'][0]['key'] == 'basic'


def test_requires_active_assessment(client):
    response = client.get('/api/sections/basic')
    assert response.status_code == 400
    assert response.get_json()['error'] == 'No active assessment'


def test_field_update_and_dependent_clear(client):
    start(client)
    client.post('/api/sections/cognitive', json={'fields': {'memory_concerns': True, 'memory_concerns_frequency': 'Often'}})
    
    response = client.post('/api/sections/cognitive/fields/memory_concerns', json={'value': False})
    
    body = response.get_json()
    assert body['success'] is True
    assert body['cleared'] == ['memory_concerns_frequency']
    snapshot = client.get('/api/sections/cognitive').get_json()['data']
    assert snapshot['memory_concerns_frequency'] == ''


def test_view_mode_denies_write(client):
    start(client)
    
    response = client.post('/api/sections/basic/fields/referral_source', json={'value': 'Self', 'mode': 'view'})
    
    assert response.status_code == 403
    assert response.get_json()['result'] == 'MutationDenied'
    assert client.get('/api/sections/basic?mode=view').get_json()['data'] == {}


def test_invalid_mode_and_unknown_field(client):
    start(client)
    assert client.get('/api/sections/basic?mode=admin').status_code == 400
    response = client.post('/api/sections/basic/fields/favourite_colour', json={'value': 'blue'})
    assert response.status_code == 400


def test_provider_lifecycle(client):
    start(client)
    
    opened = client.post('/api/providers/care_providers/primary_care_provider/add').get_json()
    assert opened['result'] == 'EditingOpened'
    
    second = client.post('/api/providers/care_providers/primary_care_provider/add')
    assert second.status_code == 409
    assert second.get_json()['result'] == 'CardinalityViolation'
    
    invalid = client.post('/api/providers/care_providers/primary_care_provider/save',
                          json={'record': {'display_name': 'Dr. Lee'}})
    assert invalid.status_code == 422
    assert invalid.get_json()['errors'][0]['field'] == 'phone'
    
    saved = client.post('/api/providers/care_providers/primary_care_provider/save',
                        json={'record': {'phone': '555-0100'}})
    body = saved.get_json()
    assert body['result'] == 'EntrySaved'
    assert body['record']['display_name'] == 'Dr. Lee'
    assert body['promoted'] is True
    
    listing = client.get('/api/providers/care_providers').get_json()['categories']
    assert listing['primary_care_provider']['state'] == 'idle'
    assert listing['primary_care_provider']['entries'][0]['phone'] == '555-0100'
    
    requested = client.post('/api/providers/care_providers/primary_care_provider/request_remove', json={'index': 0})
    assert requested.get_json()['result'] == 'RemovalRequested'
    removed = client.post('/api/providers/care_providers/primary_care_provider/confirm_remove')
    assert removed.get_json()['result'] == 'EntryRemoved'


def test_unknown_provider_action(client):
    start(client)
    response = client.post('/api/providers/care_providers/dentist/archive')
    assert response.status_code == 404


def test_validate_scores_and_export(client):
    start(client)
    client.post('/api/sections/mental', json={'fields': {'gds_q2': True, 'gds_q3': True}})
    
    validation = client.get('/api/validate').get_json()
    assert validation['valid'] is False
    assert 'basic' in validation['errors']
    
    scores = {s['key']: s for s in client.get('/api/scores').get_json()['scores']}
    assert scores['gds_15']['score'] == 2
    assert scores['adl_total']['max_score'] == 12
    
    view = client.get('/api/export?mode=print').get_json()['view']
    assert view['mode'] == 'print'
    assert view['assessment']['client_id'] == 'C-1001'


def test_complete_rejected_with_errors(client):
    start(client)
    response = client.post('/api/complete')
    assert response.status_code == 422
    assert response.get_json()['result'] == 'ValidationFailure'


def test_save_and_resume(client):
    assessment_id = start(client)
    client.post('/api/sections/basic/fields/referral_source', json={'value': 'Daughter'})
    
    first = client.post('/api/save').get_json()
    second = client.post('/api/save').get_json()
    assert (first['version'], second['version']) == (1, 2)
    
    app_module.current_assessment = {'engine': None, 'is_active': False}
    resumed = client.get(f'/api/assessments/{assessment_id}').get_json()
    assert resumed['version'] == 2
    assert client.get('/api/sections/basic').get_json()['data']['referral_source'] == 'Daughter'


def test_resume_unknown_assessment(client):
    assert client.get('/api/assessments/missing').status_code == 404

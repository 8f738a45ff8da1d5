"""
Route tests for the review API using the Flask test client.
Model calls are patched out.
"""
import json
from io import BytesIO
from unittest.mock import patch

import pytest
from docx import Document

from main import app
from redline.cache import review_cache

CONTRACT = (
    '1. Payment. The Customer shall pay all undisputed invoices within thirty days of receipt and '
    'late amounts accrue interest at the rate set out in the applicable legislation.\n\n'
    '2. Termination. Either party may terminate this agreement for convenience by giving the other '
    'party not less than ninety days written notice.'
)


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv('REDLINE_SETTINGS_PATH', str(tmp_path / 'settings.json'))
    app.config['TESTING'] = True
    app.config['STREAM_ISSUE_DELAY'] = 0
    review_cache.clear()
    with app.test_client() as client:
        yield client
    review_cache.clear()


def _docx_bytes(*paragraphs):
    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    buffer = BytesIO()
    doc.save(buffer)
    buffer.seek(0)
    return buffer


def _sse_events(response):
    body = response.get_data(as_text=True)
    return [json.loads(chunk[len('data: '):]) for chunk in body.split('\n\n') if chunk.startswith('data: ')]


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok'}
    assert response.headers['Access-Control-Allow-Origin'] == '*'


def test_preflight(client):
    response = client.open('/api/review', method='OPTIONS')
    assert response.status_code == 204


class TestReviewRoute:

    def test_missing_text(self, client):
        response = client.post('/api/review', json={'text': ''})
        assert response.status_code == 400
        assert response.get_json() == {'error': 'Missing contract text.'}

    @patch('redline.services.llm_client.review_clause')
    def test_review_adds_diff_and_caches(self, mock_review, client):
        mock_review.return_value = {
            'revisedText': 'Pay within sixty days.',
            'comments': [],
            'summary': 'Extended the term.',
        }

        first = client.post('/api/review', json={'text': 'Pay within thirty days.', 'riskProfile': 'cautious'})
        second = client.post('/api/review', json={'text': 'Pay within thirty days.', 'riskProfile': 'cautious'})

        assert first.status_code == 200
        data = first.get_json()
        assert data['diff'] == 'Pay within [-thirty-][+sixty+] days.'
        assert 'diff-insert' in data['diffHtml']
        assert second.get_json() == data
        mock_review.assert_called_once_with('Pay within thirty days.', None, 'cautious')

    @patch('redline.services.llm_client.review_clause', side_effect=RuntimeError('Unable to parse model response.'))
    def test_review_failure(self, mock_review, client):
        response = client.post('/api/review', json={'text': 'Clause.'})
        assert response.status_code == 500
        assert response.get_json() == {'error': 'Unable to parse model response.'}


    @patch('redline.services.llm_client.review_clause')
    def test_non_string_revision_is_ignored(self, mock_review, client):
        mock_review.return_value = {'revisedText': ['not', 'a', 'string'], 'comments': [], 'summary': ''}

        response = client.post('/api/review', json={'text': 'Pay within thirty days.'})

        assert response.status_code == 200
        assert response.is_json
        assert response.get_json()['diff'] == 'Pay within thirty days.'


class TestChatRoute:

    def test_missing_message(self, client):
        response = client.post('/api/chat', json={})
        assert response.status_code == 400

    @patch('redline.services.llm_client.chat')
    def test_suggestion_gets_diff_against_selection(self, mock_chat, client):
        mock_chat.return_value = {'response': 'Try this.', 'suggestion': 'Net 45 terms apply.'}

        response = client.post('/api/chat', json={
            'message': 'Make it longer',
            'selectionContext': 'Net 30 terms apply.',
            'history': 'not a list',
        })

        data = response.get_json()
        assert data['response'] == 'Try this.'
        assert '<span class="diff-insert">' in data['diffHtml']
        mock_chat.assert_called_once_with('Make it longer', '', 'Net 30 terms apply.', [])

    @patch('redline.services.llm_client.chat', return_value={'response': 'Sure.', 'suggestion': None})
    def test_no_suggestion_no_diff(self, mock_chat, client):
        data = client.post('/api/chat', json={'message': 'Hello'}).get_json()
        assert 'diffHtml' not in data

    @patch('redline.services.llm_client.chat', return_value={'response': 'Sure.', 'suggestion': 7})
    def test_non_string_suggestion_gets_no_diff(self, mock_chat, client):
        response = client.post('/api/chat', json={'message': 'Hello', 'selectionContext': 'Net 30.'})
        assert response.status_code == 200
        assert 'diffHtml' not in response.get_json()

    @patch('redline.services.llm_client.chat', return_value={'response': 'Sure.', 'suggestion': None})
    def test_non_string_contexts_are_dropped(self, mock_chat, client):
        response = client.post('/api/chat', json={'message': 'Hello', 'selectionContext': 5, 'documentContext': []})
        assert response.status_code == 200
        mock_chat.assert_called_once_with('Hello', '', '', [])


class TestReviewStreamRoute:

    @patch('redline.services.llm_client.find_issues')
    def test_stream_events(self, mock_find_issues, client):
        mock_find_issues.side_effect = [
            [{'type': 'edit', 'originalText': 'thirty', 'newText': 'sixty', 'severity': 'high'}],
            [],
        ]

        response = client.post('/api/review-stream', json={'text': CONTRACT})

        assert response.mimetype == 'text/event-stream'
        events = _sse_events(response)
        assert [event['type'] for event in events] == ['start', 'clause', 'issue', 'clause', 'complete']
        assert events[2]['issue']['diff'] == '[-thirty-][+sixty+]'
        assert events[-1] == {'type': 'complete', 'totalIssues': 1, 'totalClauses': 2}

    @patch('redline.services.llm_client.find_issues')
    def test_stream_uses_configured_diff_budget(self, mock_find_issues, client, monkeypatch):
        monkeypatch.setitem(app.config, 'DIFF_MAX_CELLS', 1)
        mock_find_issues.side_effect = [
            [{'type': 'edit', 'originalText': 'within thirty days', 'newText': 'within sixty days'}],
            [],
        ]

        events = _sse_events(client.post('/api/review-stream', json={'text': CONTRACT}))

        issue = [event for event in events if event['type'] == 'issue'][0]['issue']
        assert issue['diffSkipped'] is True
        assert issue['diff'] == 'Diff preview skipped (selection too large).'

    @patch('redline.services.llm_client.find_issues')
    def test_stream_survives_malformed_issue(self, mock_find_issues, client):
        mock_find_issues.side_effect = [
            [{'type': 'edit', 'originalText': 42, 'newText': 'x'}],
            [],
        ]

        events = _sse_events(client.post('/api/review-stream', json={'text': CONTRACT}))

        assert [event['type'] for event in events] == ['start', 'clause', 'issue', 'clause', 'complete']

    def test_stream_missing_text(self, client):
        events = _sse_events(client.get('/api/review-stream'))
        assert events == [{'type': 'error', 'message': 'Missing contract text.'}]


class TestDiffRoute:

    def test_diff_payload(self, client):
        response = client.post('/api/diff', json={
            'original': 'within thirty days',
            'revised': 'within sixty days',
        })

        data = response.get_json()
        assert data['skipped'] is False
        assert data['plain'] == 'within [-thirty-][+sixty+] days'
        assert data['segments'][1] == {'type': 'delete', 'text': 'thirty'}
        assert data['regions'] == [
            {'type': 'change', 'deleted': 'within thirty days', 'inserted': 'within sixty days'},
        ]

    def test_diff_skipped(self, client):
        response = client.post('/api/diff', json={'original': 'a b c', 'revised': 'x y z', 'maxCells': 1})

        data = response.get_json()
        assert data['skipped'] is True
        assert data['segments'] == []
        assert data['plain'] == 'Diff preview skipped (selection too large).'
        assert data['html'] == '<em>Diff preview skipped (selection too large).</em>'

    @pytest.mark.parametrize('body', [
        {'original': 'a'},
        {'original': 1, 'revised': 'b'},
        {'original': 'a', 'revised': 'b', 'maxCells': 'many'},
    ])
    def test_diff_validation(self, client, body):
        assert client.post('/api/diff', json=body).status_code == 400


class TestClausesRoute:

    def test_json_text(self, client):
        data = client.post('/api/clauses', json={'text': CONTRACT}).get_json()
        assert data['count'] == 2
        assert data['clauses'][1].startswith('2. Termination.')

    def test_uploaded_docx(self, client):
        upload = _docx_bytes(*CONTRACT.split('\n\n'))

        response = client.post(
            '/api/clauses',
            data={'file': (upload, 'contract.docx')},
            content_type='multipart/form-data'
        )

        assert response.status_code == 200
        assert response.get_json()['count'] == 2

    def test_rejects_other_uploads(self, client):
        response = client.post(
            '/api/clauses',
            data={'file': (BytesIO(b'text'), 'contract.txt')},
            content_type='multipart/form-data'
        )
        assert response.status_code == 400

    def test_empty_document_is_unprocessable(self, client):
        response = client.post(
            '/api/clauses',
            data={'file': (_docx_bytes(), 'empty.docx')},
            content_type='multipart/form-data'
        )
        assert response.status_code == 422


class TestRedlineRoute:

    def test_returns_redlined_docx(self, client):
        upload = _docx_bytes('Payment is due within thirty days.')
        edits = [
            {'originalText': 'thirty', 'newText': 'sixty'},
            {'originalText': 'indemnity', 'newText': 'hold harmless'},
        ]

        response = client.post(
            '/api/redline',
            data={'file': (upload, 'Supplier MSA.docx'), 'edits': json.dumps(edits)},
            content_type='multipart/form-data'
        )

        assert response.status_code == 200
        assert response.headers['X-Redline-Applied'] == '1'
        assert response.headers['X-Redline-Unmatched'] == '1'
        assert 'Supplier_MSA_redlined.docx' in response.headers['Content-Disposition']

        doc = Document(BytesIO(response.data))
        inserted = doc.paragraphs[0]._p.xpath('./w:ins//w:t')
        assert [t.text for t in inserted] == ['sixty']

    def test_bad_edits_json(self, client):
        response = client.post(
            '/api/redline',
            data={'file': (_docx_bytes('Text.'), 'c.docx'), 'edits': '{oops'},
            content_type='multipart/form-data'
        )
        assert response.status_code == 400

    def test_no_edits_or_comments(self, client):
        response = client.post(
            '/api/redline',
            data={'file': (_docx_bytes('Text.'), 'c.docx')},
            content_type='multipart/form-data'
        )
        assert response.status_code == 400
        assert response.get_json() == {'error': 'No edits provided to apply'}

    def test_non_string_edit_text(self, client):
        response = client.post(
            '/api/redline',
            data={
                'file': (_docx_bytes('Text.'), 'c.docx'),
                'edits': json.dumps([{'originalText': 5, 'newText': 'five'}]),
            },
            content_type='multipart/form-data'
        )
        assert response.status_code == 400
        assert response.get_json() == {'error': "Edit 'originalText' and 'newText' must be strings"}

    def test_missing_file(self, client):
        assert client.post('/api/redline', data={}).status_code == 400


class TestSettingsRoute:

    def test_round_trip(self, client):
        assert client.get('/api/settings').get_json() == {}

        response = client.put('/api/settings', json={'endpoint': ' http://localhost:8787/api/review '})
        assert response.get_json() == {
            'success': True,
            'settings': {'endpoint': 'http://localhost:8787/api/review'},
        }

        assert client.get('/api/settings').get_json() == {'endpoint': 'http://localhost:8787/api/review'}

    def test_rejects_non_object(self, client):
        assert client.put('/api/settings', json=['x']).status_code == 400
        assert client.put('/api/settings', json={'endpoint': 5}).status_code == 400

import time
import uuid
from concurrent.futures import ThreadPoolExecutor

import requests
from django.core.management.base import BaseCommand, CommandError


class Command(BaseCommand):
    help = 'Нагрузочный тест: создание и мерж PR с заданным RPS против запущенного сервиса'

    def add_arguments(self, parser):
        parser.add_argument('--base-url', default='http://localhost:8080/api')
        parser.add_argument('--rps', type=int, default=5)
        parser.add_argument('--duration', type=int, default=10, help='Длительность в секундах')
        parser.add_argument('--users', type=int, default=10)
        parser.add_argument('--timeout', type=float, default=5.0)

    def handle(self, *args, **options):
        base_url = options['base_url'].rstrip('/')
        rps = options['rps']
        duration = options['duration']
        timeout = options['timeout']

        if rps <= 0 or duration <= 0:
            raise CommandError('--rps and --duration must be positive')

        session = requests.Session()
        user_ids = self._setup_team(session, base_url, options['users'], timeout)
        if len(user_ids) < 3:
            raise CommandError('Not enough users for stress test, need at least 3')

        self.stdout.write(f"Setup complete: {len(user_ids)} users. Running {duration}s at {rps} RPS")

        total = rps * duration
        started = time.monotonic()
        with ThreadPoolExecutor(max_workers=rps * 2) as pool:
            futures = []
            for i in range(total):
                # Равномерно раскладываем запросы по времени
                delay = started + i / rps - time.monotonic()
                if delay > 0:
                    time.sleep(delay)
                author_id = user_ids[i % len(user_ids)]
                futures.append(pool.submit(self._create_and_merge, session, base_url, author_id, timeout))
            results = [future.result() for future in futures]

        elapsed = time.monotonic() - started
        successes = [latency for ok, latency in results if ok]
        avg_latency = sum(successes) / len(successes) if successes else 0.0

        self.stdout.write(f"Requests: {total}, successful: {len(successes)}, elapsed: {elapsed:.2f}s")
        self.stdout.write(f"Actual RPS: {total / elapsed:.2f}, average latency: {avg_latency * 1000:.1f}ms")

    def _setup_team(self, session, base_url, users_count, timeout):
        team_name = f"stress-{uuid.uuid4().hex[:8]}"
        response = session.post(f"{base_url}/team/add", json={
            'team_name': team_name,
            'members': [
                {'username': f"stress-user-{i}", 'is_active': True}
                for i in range(users_count)
            ],
        }, timeout=timeout)
        if response.status_code != 201:
            raise CommandError(f"Failed to create team: {response.status_code} {response.text}")
        return [member['user_id'] for member in response.json()['team']['members']]

    def _create_and_merge(self, session, base_url, author_id, timeout):
        started = time.monotonic()
        try:
            response = session.post(f"{base_url}/pullRequest/create", json={
                'pull_request_name': f"stress PR by {author_id}",
                'author_id': author_id,
            }, timeout=timeout)
            if response.status_code != 201:
                self.stderr.write(f"Create PR failed for user {author_id}: {response.status_code}")
                return False, 0.0

            pr_id = response.json()['pr']['pull_request_id']
            response = session.post(f"{base_url}/pullRequest/merge", json={
                'pull_request_id': pr_id,
            }, timeout=timeout)
            if response.status_code != 200:
                self.stderr.write(f"Merge PR {pr_id} failed: {response.status_code}")
                return False, 0.0
        except requests.RequestException as e:
            self.stderr.write(f"Request error for user {author_id}: {e}")
            return False, 0.0

        return True, time.monotonic() - started

import sys
import requests

BASE = sys.argv[1] if len(sys.argv) > 1 else 'http://127.0.0.1:8000'

print('Health:', requests.get(f'{BASE}/', timeout=5).json())
res = requests.get(f'{BASE}/withdrawals', params={'status': 'pending', 'page_size': 10}, timeout=5)
print('Pending withdrawals:', res.status_code, res.json())
res = requests.post(f'{BASE}/trades/settle-expired', timeout=30)
print('Settlement sweep:', res.status_code, res.json())

import unittest
from datetime import date

from shop_core import db
from shop_core.models import (
    Product, Sale, generate_employee_code, generate_sale_number, utcnow,
)
from tests.base import ApiTestCase


class SequenceTestCase(ApiTestCase):
    def test_employee_codes_are_sequential_per_year(self):
        with self.app.app_context():
            self.assertEqual(generate_employee_code(date(2025, 3, 1)), 'EMP20250001')
            self.assertEqual(generate_employee_code(date(2025, 7, 9)), 'EMP20250002')
            self.assertEqual(generate_employee_code(date(2026, 1, 2)), 'EMP20260001')
            db.session.commit()

    def test_sale_numbers_restart_each_day(self):
        with self.app.app_context():
            self.assertEqual(generate_sale_number(date(2025, 10, 18)), 'SALE202510180001')
            self.assertEqual(generate_sale_number(date(2025, 10, 18)), 'SALE202510180002')
            self.assertEqual(generate_sale_number(date(2025, 10, 19)), 'SALE202510190001')
            db.session.commit()


class EmployeeTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.headers = self.auth()

    def employee_payload(self, **fields):
        payload = {
            'first_name': 'Dilnoza',
            'last_name': 'Karimova',
            'position': 'Cashier',
            'department': 'Sales',
            'base_salary': 4500000,
            'hire_date': '2024-02-01',
        }
        payload.update(fields)
        return payload

    def test_create_employee_with_defaults(self):
        rv = self.client.post('/admin/employees', headers=self.headers, json=self.employee_payload())
        self.assertEqual(rv.status_code, 201)
        data = rv.get_json()['data']
        self.assertEqual(data['employee_id'], f"EMP{utcnow():%Y}0001")
        self.assertEqual(data['full_name'], 'Dilnoza Karimova')
        self.assertEqual(data['employment_type'], 'full_time')
        self.assertEqual(data['work_hours_per_day'], 8)
        self.assertEqual(data['work_shift'], 'day')
        self.assertTrue(data['is_active'])
        self.assertEqual(data['hire_date'], '2024-02-01')

        rv = self.client.post('/admin/employees', headers=self.headers,
                              json=self.employee_payload(first_name='Aziz'))
        self.assertEqual(rv.get_json()['data']['employee_id'], f"EMP{utcnow():%Y}0002")

    def test_create_employee_with_explicit_code(self):
        rv = self.client.post('/admin/employees', headers=self.headers,
                              json=self.employee_payload(employee_id='EMP-CUSTOM'))
        self.assertEqual(rv.get_json()['data']['employee_id'], 'EMP-CUSTOM')

        rv = self.client.post('/admin/employees', headers=self.headers,
                              json=self.employee_payload(employee_id='EMP-CUSTOM'))
        self.assertEqual(rv.status_code, 422)
        self.assertIn('employee_id', rv.get_json()['errors'])

    def test_employee_validation(self):
        rv = self.client.post('/admin/employees', headers=self.headers, json=self.employee_payload(
            first_name='', base_salary=-1, work_hours_per_day=25, employment_type='volunteer',
        ))
        self.assertEqual(rv.status_code, 422)
        errors = rv.get_json()['errors']
        for field in ('first_name', 'base_salary', 'work_hours_per_day', 'employment_type'):
            self.assertIn(field, errors)

    def test_update_and_delete_employee(self):
        employee = self.client.post('/admin/employees', headers=self.headers,
                                    json=self.employee_payload()).get_json()['data']
        rv = self.client.put(f"/admin/employees/{employee['id']}", headers=self.headers,
                             json=self.employee_payload(position='Manager', work_shift='night', is_active=False))
        self.assertEqual(rv.status_code, 200)
        data = rv.get_json()['data']
        self.assertEqual(data['position'], 'Manager')
        self.assertEqual(data['work_shift'], 'night')
        self.assertFalse(data['is_active'])
        self.assertEqual(data['employee_id'], employee['employee_id'])

        rv = self.client.delete(f"/admin/employees/{employee['id']}", headers=self.headers)
        self.assertEqual(rv.status_code, 200)
        rv = self.client.get(f"/admin/employees/{employee['id']}", headers=self.headers)
        self.assertEqual(rv.status_code, 404)
        self.assertEqual(rv.get_json()['message'], 'Employee not found')


class SaleTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.headers = self.auth()
        self.phone_id = self.create_product(name='Phone', cost_price=1500000, selling_price=2000000,
                                            stock_quantity=10)
        self.case_id = self.create_product(name='Case', cost_price=20000, selling_price=50000,
                                           stock_quantity=5)

    def stock(self, product_id):
        with self.app.app_context():
            return db.session.get(Product, product_id).stock_quantity

    def sell(self, items, **fields):
        payload = {
            'payment_method': 'cash',
            'total_amount': 4100000,
            'tax_amount': 0,
            'discount_amount': 0,
            'items': items,
        }
        payload.update(fields)
        return self.client.post('/admin/sales', headers=self.headers, json=payload)

    def test_create_sale(self):
        rv = self.sell([
            {'product_id': self.phone_id, 'quantity': 2, 'unit_price': 2000000, 'total_price': 4000000},
            {'product_id': self.case_id, 'quantity': 2, 'unit_price': 50000, 'total_price': 100000},
        ], tax_amount=100000, discount_amount=50000, total_amount=4150000)
        self.assertEqual(rv.status_code, 201)
        data = rv.get_json()['data']
        self.assertEqual(data['orderNumber'], f"SALE{utcnow():%Y%m%d}0001")
        self.assertEqual(data['status'], 'completed')
        self.assertEqual(data['subtotal'], 4100000.0)
        self.assertEqual(data['date'], utcnow().date().isoformat())
        self.assertEqual([i['totalPrice'] for i in data['items']], [4000000.0, 100000.0])
        self.assertEqual(data['items'][0]['productName'], 'Phone')

        self.assertEqual(self.stock(self.phone_id), 8)
        self.assertEqual(self.stock(self.case_id), 3)

    def test_insufficient_stock_changes_nothing(self):
        rv = self.sell([
            {'product_id': self.phone_id, 'quantity': 1, 'unit_price': 2000000},
            {'product_id': self.case_id, 'quantity': 3, 'unit_price': 50000},
            {'product_id': self.case_id, 'quantity': 3, 'unit_price': 50000},
        ])
        self.assertEqual(rv.status_code, 422)
        self.assertIn('items', rv.get_json()['errors'])
        self.assertEqual(self.stock(self.phone_id), 10)
        self.assertEqual(self.stock(self.case_id), 5)
        with self.app.app_context():
            self.assertEqual(Sale.query.count(), 0)

    def test_sale_validation(self):
        rv = self.sell([{'product_id': 999, 'quantity': 0, 'unit_price': 10}], payment_method='barter')
        self.assertEqual(rv.status_code, 422)
        errors = rv.get_json()['errors']
        self.assertIn('payment_method', errors)
        self.assertIn('items', errors)

        rv = self.sell([])
        self.assertEqual(rv.status_code, 422)
        self.assertIn('items', rv.get_json()['errors'])

    def test_cancel_restores_stock_once(self):
        sale = self.sell([{'product_id': self.phone_id, 'quantity': 3, 'unit_price': 2000000}]).get_json()['data']
        self.assertEqual(self.stock(self.phone_id), 7)

        rv = self.client.post(f"/admin/sales/{sale['id']}/cancel", headers=self.headers)
        self.assertEqual(rv.status_code, 200)
        self.assertEqual(rv.get_json()['data']['status'], 'cancelled')
        self.assertEqual(self.stock(self.phone_id), 10)

        rv = self.client.post(f"/admin/sales/{sale['id']}/cancel", headers=self.headers)
        self.assertEqual(rv.status_code, 422)
        self.assertEqual(self.stock(self.phone_id), 10)

        rv = self.client.post(f"/admin/sales/{sale['id']}/process", headers=self.headers)
        self.assertEqual(rv.status_code, 422)

    def test_process_pending_sale(self):
        sale = self.sell([{'product_id': self.case_id, 'quantity': 1, 'unit_price': 50000}]).get_json()['data']
        with self.app.app_context():
            record = db.session.get(Sale, sale['id'])
            record.status, record.payment_status = 'pending', 'pending'
            db.session.commit()

        rv = self.client.get(f"/admin/sales/{sale['id']}", headers=self.headers)
        self.assertEqual(rv.get_json()['data']['status'], 'pending')

        rv = self.client.post(f"/admin/sales/{sale['id']}/process", headers=self.headers)
        self.assertEqual(rv.status_code, 200)
        self.assertEqual(rv.get_json()['data']['status'], 'completed')

    def test_update_sale_replaces_items(self):
        sale = self.sell([{'product_id': self.phone_id, 'quantity': 2, 'unit_price': 2000000}]).get_json()['data']
        rv = self.client.put(f"/admin/sales/{sale['id']}", headers=self.headers, json={
            'payment_method': 'card',
            'status': 'completed',
            'payment_status': 'paid',
            'total_amount': 150000,
            'tax_amount': 0,
            'discount_amount': 0,
            'items': [{'product_id': self.case_id, 'quantity': 3, 'unit_price': 50000}],
        })
        self.assertEqual(rv.status_code, 200)
        data = rv.get_json()['data']
        self.assertEqual(data['paymentMethod'], 'card')
        self.assertEqual(data['orderNumber'], sale['orderNumber'])
        self.assertEqual([i['productId'] for i in data['items']], [self.case_id])
        self.assertEqual(self.stock(self.phone_id), 10)
        self.assertEqual(self.stock(self.case_id), 2)

    def test_delete_sale_restores_stock(self):
        sale = self.sell([{'product_id': self.case_id, 'quantity': 4, 'unit_price': 50000}]).get_json()['data']
        self.assertEqual(self.stock(self.case_id), 1)
        rv = self.client.delete(f"/admin/sales/{sale['id']}", headers=self.headers)
        self.assertEqual(rv.status_code, 200)
        self.assertEqual(self.stock(self.case_id), 5)
        self.assertEqual(self.client.get(f"/admin/sales/{sale['id']}", headers=self.headers).status_code, 404)

    def test_sale_history_survives_product_delete(self):
        sale = self.sell([{'product_id': self.phone_id, 'quantity': 2, 'unit_price': 2000000}],
                         total_amount=4000000).get_json()['data']
        rv = self.client.delete(f'/admin/products/{self.phone_id}', headers=self.headers)
        self.assertEqual(rv.status_code, 200)

        items = self.client.get(f"/admin/sales/{sale['id']}", headers=self.headers).get_json()['data']['items']
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]['productId'], self.phone_id)
        self.assertEqual(items[0]['productName'], f"Product {self.phone_id}")
        self.assertEqual(items[0]['totalPrice'], 4000000.0)

        top = self.client.get('/admin/sales/top-products', headers=self.headers).get_json()['data']
        self.assertEqual([(p['id'], p['quantitySold']) for p in top], [(self.phone_id, 2)])

        rv = self.client.post(f"/admin/sales/{sale['id']}/cancel", headers=self.headers)
        self.assertEqual(rv.status_code, 200)

    def test_sales_reports(self):
        self.sell([{'product_id': self.phone_id, 'quantity': 2, 'unit_price': 2000000}], total_amount=4000000)
        self.sell([{'product_id': self.case_id, 'quantity': 3, 'unit_price': 50000}], total_amount=150000)

        stats = self.client.get('/admin/sales/stats', headers=self.headers).get_json()['data']
        self.assertEqual(stats['totalSales'], 2)
        self.assertEqual(stats['totalRevenue'], 4150000.0)
        self.assertEqual(stats['todaySales'], 4150000.0)
        self.assertEqual(stats['completedOrders'], 2)
        self.assertEqual(stats['conversionRate'], 100.0)

        top = self.client.get('/admin/sales/top-products', headers=self.headers).get_json()['data']
        self.assertEqual([p['name'] for p in top], ['Case', 'Phone'])
        self.assertEqual(top[0]['quantitySold'], 3)

        trend = self.client.get('/admin/sales/trend', headers=self.headers).get_json()['data']
        self.assertEqual(len(trend), 7)
        self.assertEqual(trend[-1]['date'], utcnow().date().isoformat())
        self.assertEqual(trend[-1]['orders'], 2)
        self.assertEqual(sum(day['orders'] for day in trend[:-1]), 0)


class ReportTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.headers = self.auth()

    def test_inventory_stats(self):
        self.create_product(name='A', cost_price=1000, selling_price=1500, stock_quantity=4, reorder_level=1)
        self.create_product(name='B', cost_price=200, selling_price=300, stock_quantity=0, reorder_level=1)
        data = self.client.get('/admin/inventory/stats', headers=self.headers).get_json()['data']
        self.assertEqual(data['totalProducts'], 2)
        self.assertEqual(data['lowStockItems'], 1)
        self.assertEqual(data['outOfStockItems'], 1)
        self.assertEqual(data['totalValue'], 4000.0)

    def test_dashboard(self):
        product_id = self.create_product(name='Phone', cost_price=1500000, selling_price=2000000)
        self.client.post('/admin/employees', headers=self.headers, json={
            'first_name': 'Aziz', 'last_name': 'Tursunov', 'position': 'Seller',
            'department': 'Sales', 'base_salary': 300000,
        })
        self.client.post('/admin/sales', headers=self.headers, json={
            'payment_method': 'card', 'total_amount': 2000000, 'tax_amount': 0, 'discount_amount': 0,
            'items': [{'product_id': product_id, 'quantity': 1, 'unit_price': 2000000}],
        })

        metrics = self.client.get('/admin/dashboard/metrics', headers=self.headers).get_json()['data']
        self.assertEqual(metrics['totalRevenue'], 2000000.0)
        self.assertEqual(metrics['totalExpenses'], 1800000.0)
        self.assertEqual(metrics['netProfit'], 200000.0)
        self.assertEqual(metrics['profitMargin'], 10.0)
        self.assertEqual(metrics['totalEmployees'], 1)
        self.assertEqual(metrics['totalSales'], 1)

        trend = self.client.get('/admin/dashboard/sales-trend', headers=self.headers).get_json()['data']
        self.assertEqual(len(trend), 6)
        self.assertEqual(trend[-1]['sales'], 2000000.0)
        self.assertEqual(trend[-1]['profit'], 500000.0)

        expenses = self.client.get('/admin/dashboard/expenses', headers=self.headers).get_json()['data']
        self.assertEqual({e['name']: e['value'] for e in expenses},
                         {'Product Costs': 1500000.0, 'Employee Costs': 300000.0})

    def test_dashboard_without_data(self):
        rv = self.client.get('/admin/dashboard/expenses', headers=self.headers)
        self.assertEqual(rv.get_json()['data'], [])
        metrics = self.client.get('/admin/dashboard/metrics', headers=self.headers).get_json()['data']
        self.assertEqual(metrics['profitMargin'], 0)


if __name__ == '__main__':
    unittest.main()

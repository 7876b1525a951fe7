"""
Tests for clinic program CRUD and the public program endpoints.
"""

from patient_api.models import FormProducts, Product, Program, Questionnaire, TenantProduct


def create_program(db, clinic, **fields):
    program = Program(name=fields.pop("name", "Weight Loss"), clinic_id=clinic.id if clinic else None, **fields)
    db.add(program)
    db.commit()
    db.refresh(program)
    return program


class TestProgramCrud:
    def test_create_program(self, client, make_clinic, make_user, auth_headers):
        clinic = make_clinic()
        brand = make_user(role="brand", clinic=clinic)

        response = client.post(
            "/programs",
            json={"name": "  Hair Regrowth ", "hasPatientPortal": True, "patientPortalPrice": 19.5},
            headers=auth_headers(brand),
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["name"] == "Hair Regrowth"
        assert data["clinicId"] == clinic.id
        assert data["nonMedicalServices"]["patientPortal"] == {"enabled": True, "price": 19.5}
        assert data["nonMedicalServicesFee"] == 19.5

    def test_create_program_requires_name(self, client, make_clinic, make_user, auth_headers):
        brand = make_user(role="brand", clinic=make_clinic())

        response = client.post("/programs", json={"description": "no name"}, headers=auth_headers(brand))

        assert response.status_code == 400
        assert response.json()["message"] == "Program name is required"

    def test_create_program_unknown_template(self, client, make_clinic, make_user, auth_headers):
        brand = make_user(role="brand", clinic=make_clinic())

        response = client.post(
            "/programs",
            json={"name": "Sleep", "medicalTemplateId": "missing"},
            headers=auth_headers(brand),
        )

        assert response.status_code == 404

    def test_user_without_clinic(self, client, make_user, auth_headers):
        patient = make_user()

        response = client.get("/programs", headers=auth_headers(patient))

        assert response.status_code == 400

    def test_list_only_own_clinic(self, client, db, make_clinic, make_user, auth_headers):
        mine, theirs = make_clinic(), make_clinic()
        create_program(db, mine, name="Mine")
        create_program(db, theirs, name="Theirs")
        brand = make_user(role="brand", clinic=mine)

        response = client.get("/programs", headers=auth_headers(brand))

        assert response.status_code == 200
        assert [p["name"] for p in response.json()["data"]] == ["Mine"]

    def test_update_program(self, client, db, make_clinic, make_user, auth_headers):
        clinic = make_clinic()
        program = create_program(db, clinic)
        brand = make_user(role="brand", clinic=clinic)

        response = client.put(
            f"/programs/{program.id}",
            json={"description": "Updated", "isActive": False},
            headers=auth_headers(brand),
        )

        assert response.status_code == 200
        assert response.json()["data"]["description"] == "Updated"
        assert response.json()["data"]["isActive"] is False

    def test_update_rejects_blank_name(self, client, db, make_clinic, make_user, auth_headers):
        clinic = make_clinic()
        program = create_program(db, clinic)
        brand = make_user(role="brand", clinic=clinic)

        response = client.put(f"/programs/{program.id}", json={"name": "   "}, headers=auth_headers(brand))

        assert response.status_code == 400

    def test_update_clears_nullable_fields_and_strips_name(self, client, db, make_clinic, make_user, auth_headers):
        clinic = make_clinic()
        program = create_program(db, clinic, description="Twelve week plan", patient_portal_price=19.5)
        brand = make_user(role="brand", clinic=clinic)

        response = client.put(
            f"/programs/{program.id}",
            json={"name": " Sleep Reset  ", "description": None, "patientPortalPrice": None},
            headers=auth_headers(brand),
        )

        assert response.status_code == 200
        db.refresh(program)
        assert program.name == "Sleep Reset"
        assert program.description is None
        assert program.patient_portal_price == 19.5

    def test_update_other_clinic_program_is_not_found(self, client, db, make_clinic, make_user, auth_headers):
        owner, intruder_clinic = make_clinic(), make_clinic()
        program = create_program(db, owner, description="Original")
        intruder = make_user(role="brand", clinic=intruder_clinic)

        response = client.put(
            f"/programs/{program.id}", json={"description": "Hijacked"}, headers=auth_headers(intruder)
        )

        assert response.status_code == 404
        db.refresh(program)
        assert program.description == "Original"

    def test_delete_own_program_soft_deletes(self, client, db, make_clinic, make_user, auth_headers):
        clinic = make_clinic()
        program = create_program(db, clinic)
        brand = make_user(role="brand", clinic=clinic)

        response = client.delete(f"/programs/{program.id}", headers=auth_headers(brand))

        assert response.status_code == 200
        db.refresh(program)
        assert program.deleted_at is not None
        assert client.get(f"/programs/{program.id}", headers=auth_headers(brand)).status_code == 404

    def test_delete_other_clinic_program_is_not_found(self, client, db, make_clinic, make_user, auth_headers):
        owner, intruder_clinic = make_clinic(), make_clinic()
        program = create_program(db, owner)
        intruder = make_user(role="brand", clinic=intruder_clinic)

        response = client.delete(f"/programs/{program.id}", headers=auth_headers(intruder))

        assert response.status_code == 404
        db.refresh(program)
        assert program.deleted_at is None


class TestPublicPrograms:
    def test_programs_by_clinic_slug(self, client, db, make_clinic):
        clinic = make_clinic("Glow Health")
        create_program(db, clinic, name="Active")
        create_program(db, clinic, name="Inactive", is_active=False)

        response = client.get("/public/programs/by-clinic/glow-health")

        assert response.status_code == 200
        body = response.json()
        assert [p["name"] for p in body["data"]] == ["Active"]
        assert body["isAffiliate"] is False

    def test_affiliate_clinic_sells_parent_programs(self, client, db, make_clinic):
        brand = make_clinic("Glow Health")
        affiliate = make_clinic("Glow Partner", affiliate_owner_clinic_id=brand.id)
        create_program(db, brand, name="Brand Program")

        response = client.get(f"/public/programs/by-clinic/{affiliate.slug}")

        assert response.status_code == 200
        assert response.json()["isAffiliate"] is True
        assert [p["name"] for p in response.json()["data"]] == ["Brand Program"]

    def test_unknown_clinic(self, client):
        assert client.get("/public/programs/by-clinic/nope").status_code == 404

    def test_public_program_uses_tenant_price(self, client, db, make_clinic):
        clinic = make_clinic()
        template = Questionnaire(title="Weight intake", product_offer_type="multiple_choice")
        priced = Product(name="Semaglutide", price=299.0)
        unpriced = Product(name="Metformin", price=49.0)
        db.add_all([template, priced, unpriced])
        db.flush()
        db.add_all(
            [
                FormProducts(questionnaire_id=template.id, product_id=priced.id),
                FormProducts(questionnaire_id=template.id, product_id=unpriced.id),
                TenantProduct(clinic_id=clinic.id, product_id=priced.id, price=249.0),
            ]
        )
        db.commit()
        program = create_program(
            db, clinic, medical_template_id=template.id, has_bmi_calculator=True, bmi_calculator_price=5.0
        )

        response = client.get(f"/public/programs/{program.id}")

        assert response.status_code == 200
        data = response.json()["data"]
        prices = {p["name"]: p["displayPrice"] for p in data["products"]}
        assert prices == {"Semaglutide": 249.0, "Metformin": 49.0}
        assert data["productOfferType"] == "multiple_choice"
        assert data["nonMedicalServicesFee"] == 5.0

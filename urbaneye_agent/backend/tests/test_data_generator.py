from data_generator import COMPLAINT_TEMPLATES, Department, SyntheticDataGenerator


def test_dataset_has_staff_for_every_department():
    # MongoClient connects lazily, generation never touches the server
    generator = SyntheticDataGenerator("mongodb://localhost:27017/", database_name="urbaneye_test")

    dataset = generator.generate_synthetic_dataset(staff_per_department=2, total_complaints=30)

    departments = {member.department for member in dataset["staff"]}
    assert departments == {department.value for department in Department}
    assert len(dataset["complaints"]) == 30

    for complaint in dataset["complaints"]:
        if complaint.assigned_staff_id:
            assert complaint.status in ("assigned", "in_progress")
            assert complaint.category in COMPLAINT_TEMPLATES
        else:
            assert complaint.status == "pending"
